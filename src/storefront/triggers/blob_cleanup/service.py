"""Service: drains deferred blob deletions and sweeps orphan blobs."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from aws_lambda_powertools import Logger

from storefront.shared.retry import RetryExhaustedError, RetryPolicy
from storefront.shared.storage import ADDITIONAL_FOLDER, MAIN_FOLDER, BlobGateway
from storefront.triggers.blob_cleanup.repository import BlobCleanupRepository

logger = Logger(service="blob-cleanup")

# Blobs younger than this may belong to an edit whose image row is not inserted yet.
ORPHAN_MIN_AGE = timedelta(hours=1)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class BlobCleanupService:
    def __init__(self, policy: Optional[RetryPolicy] = None) -> None:
        self.repo = BlobCleanupRepository()
        self.blobs = BlobGateway()
        self.policy = policy or RetryPolicy()

    def run(self, sweep_orphans: bool = True) -> Dict[str, Any]:
        result = self.drain_queue()
        if sweep_orphans:
            result.update(self.sweep_orphans())
        return result

    def drain_queue(self) -> Dict[str, int]:
        pending = self.repo.list_pending(self.repo.batch_size())
        if not pending:
            return {"queue_deleted": 0, "queue_failed": 0, "queue_skipped": 0}

        referenced = self.repo.referenced_urls([row["image_url"] for row in pending])
        deleted = failed = skipped = 0
        for row in pending:
            url = row["image_url"]
            if url in referenced:
                logger.warning("Queued blob is referenced again, dropping entry", extra={"url": url})
                self.repo.complete(row["id"])
                skipped += 1
                continue
            try:
                self.policy.call(self.blobs.delete, url)
            except RetryExhaustedError as e:
                attempts = int(row.get("attempts") or 0) + 1
                logger.warning(
                    "Queued blob delete failed",
                    extra={"url": url, "attempts": attempts, "error": str(e.last_error)},
                )
                self.repo.record_failure(row["id"], attempts, str(e.last_error))
                failed += 1
                continue
            self.repo.complete(row["id"])
            deleted += 1
        return {"queue_deleted": deleted, "queue_failed": failed, "queue_skipped": skipped}

    def sweep_orphans(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Deletes blobs under the product folders that no image row references."""
        now = now or datetime.now(timezone.utc)
        referenced_keys = {BlobGateway.key_from_url(url) for url in self.repo.all_referenced_urls()}
        objects = self.blobs.list_objects(MAIN_FOLDER) + self.blobs.list_objects(ADDITIONAL_FOLDER)

        orphans = []
        for obj in objects:
            if obj["key"] in referenced_keys:
                continue
            created = _parse_time(obj.get("created_at"))
            if created is None or now - created < ORPHAN_MIN_AGE:
                continue
            orphans.append(obj["key"])

        if not orphans:
            return {"orphans_found": 0, "orphans_deleted": 0}
        logger.info("Orphans to delete", extra={"keys": orphans})
        deleted = 0
        for key in orphans:
            try:
                self.policy.call(self.blobs.delete, key)
                deleted += 1
            except RetryExhaustedError as e:
                logger.warning("Orphan delete failed", extra={"key": key, "error": str(e.last_error)})
        return {"orphans_found": len(orphans), "orphans_deleted": deleted}
