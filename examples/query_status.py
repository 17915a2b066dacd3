import logging
import os
import sys

from chilean_einvoice import SIIClient, SIIConfig, SIIError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("example_status")


def main():
    cfg = SIIConfig.from_env()
    # Status reads are idempotent, so let transport hiccups retry.
    client = SIIClient(cfg, status_retries=2)

    try:
        if len(sys.argv) > 1:
            status = client.submission_status(sys.argv[1])
            logger.info(f"TRACKID {status.track_id}: {status.status} {status.description}")
            logger.info(f"accepted={status.accepted} rejected={status.rejected} objected={status.objected}")
        else:
            # Single document: issuer, receiver, type, folio, date, amount
            status = client.document_status(
                os.getenv("DTE_ISSUER", "76543210-3"),
                None,
                os.getenv("DTE_RECEIVER", "11111111-1"),
                None,
                os.getenv("DTE_TYPE", "33"),
                os.getenv("DTE_FOLIO", "1"),
                os.getenv("DTE_DATE", "2024-05-01"),
                os.getenv("DTE_AMOUNT", "1190"),
            )
            logger.info(f"DTE: {status.status} {status.description} (err {status.error_code})")
    except SIIError as e:
        logger.error(f"Status query failed: {e}")


if __name__ == "__main__":
    main()
