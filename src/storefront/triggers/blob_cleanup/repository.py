"""Repository: queue rows and image references in Supabase."""

import os
from typing import List, Set

from storefront.shared.database import get_supabase_client

DEFAULT_BATCH_SIZE = 100
REFERENCE_PAGE_SIZE = 1000


class BlobCleanupRepository:
    QUEUE = "blob_deletion_queue"

    def __init__(self) -> None:
        self.db = get_supabase_client()

    def batch_size(self) -> int:
        return int(os.environ.get("CLEANUP_BATCH_SIZE") or DEFAULT_BATCH_SIZE)

    def list_pending(self, limit: int) -> List[dict]:
        """Oldest queued deletions first."""
        res = (
            self.db.table(self.QUEUE)
            .select("id, image_url, reason, attempts")
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return res.data or []

    def complete(self, entry_id: int) -> None:
        self.db.table(self.QUEUE).delete().eq("id", entry_id).execute()

    def record_failure(self, entry_id: int, attempts: int, error: str) -> None:
        self.db.table(self.QUEUE).update(
            {"attempts": attempts, "last_error": error}
        ).eq("id", entry_id).execute()

    def referenced_urls(self, urls: List[str]) -> Set[str]:
        """Subset of ``urls`` still referenced by an image row."""
        if not urls:
            return set()
        res = self.db.table("images").select("image_url").in_("image_url", urls).execute()
        return {row["image_url"] for row in (res.data or [])}

    def all_referenced_urls(self) -> Set[str]:
        """
        Every image_url in the images table, read page by page.

        Paging stops only on an empty page: the server may cap responses below
        the requested page size, and a missed row makes a live blob look orphaned.
        """
        urls: Set[str] = set()
        offset = 0
        while True:
            res = (
                self.db.table("images")
                .select("image_url")
                .order("id")
                .range(offset, offset + REFERENCE_PAGE_SIZE - 1)
                .execute()
            )
            rows = res.data or []
            if not rows:
                return urls
            urls.update(row["image_url"] for row in rows if row.get("image_url"))
            offset += len(rows)
