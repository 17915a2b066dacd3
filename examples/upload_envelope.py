import logging
import sys
from pathlib import Path

from chilean_einvoice import SIIClient, SIIConfig, SIIError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("example_upload")


def main():
    if len(sys.argv) < 2:
        print("usage: upload_envelope.py EnvioDTE.xml")
        sys.exit(2)

    # The envelope must already be signed by your document builder.
    envelope = Path(sys.argv[1]).read_bytes()

    cfg = SIIConfig.from_env()
    client = SIIClient(cfg)

    try:
        receipt = client.upload(envelope)
    except SIIError as e:
        logger.error(f"Upload failed: {e}")
        sys.exit(1)

    if receipt.ok:
        logger.info(f"Uploaded, TRACKID={receipt.track_id}")
    else:
        logger.error(f"No TRACKID (HTTP {receipt.http_status}, STATUS={receipt.upload_status})")
        logger.error(receipt.raw[:500])


if __name__ == "__main__":
    main()
