import logging

from chilean_einvoice import SIIClient, SIIConfig, SIIError

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("example_token")


def main():
    # SII_ENV, SII_CERT_PFX_PATH, SII_CERT_PFX_PASS, SII_RUT_* / SII_DV_*
    cfg = SIIConfig.from_env()
    client = SIIClient(cfg)

    cred = client.credential
    logger.info(f"Certificate {cred.subject} ({cred.key_size}-bit, key in {cred.key_bag_type})")

    try:
        seed = client.get_seed()
        logger.info(f"Seed: {seed}")
        token = client.get_token()
        logger.info(f"Token: {token[:4]}... (cached until {client.session_cache.expires_at})")
    except SIIError as e:
        logger.error(f"Handshake failed: {e}")


if __name__ == "__main__":
    main()
