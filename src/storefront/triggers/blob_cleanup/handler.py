"""Handler: triggered by EventBridge (hourly cron)."""

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from storefront.triggers.blob_cleanup.service import BlobCleanupService

logger = Logger(service="blob-cleanup")


@logger.inject_lambda_context
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """Drains the blob deletion queue and removes orphan blobs from the product bucket."""
    try:
        service = BlobCleanupService()
        result = service.run(sweep_orphans=(event or {}).get("sweep_orphans", True))
        logger.info("Cleanup finished", extra=result)
        return {"statusCode": 200, "body": result}
    except Exception:
        logger.exception("Blob cleanup failed")
        raise
