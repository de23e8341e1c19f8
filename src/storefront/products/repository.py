from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from aws_lambda_powertools import Logger

from storefront.shared.database import get_supabase_client
from storefront.shared.retry import RetryPolicy
from storefront.products.schemas import ImageRecord, ProductFields

logger = Logger(service="products")

IMAGE_COLUMNS = "id, product_id, image_url, is_main, created_at"
PRODUCT_COLUMNS = "id, name, description, price, stock, category_id, created_at, categories(name)"
DELETE_CHUNK_SIZE = 100


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def chunked(ids: List[int], size: int = DELETE_CHUNK_SIZE) -> Iterator[List[int]]:
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


class ProductRepository:
    def __init__(self):
        self.db = get_supabase_client()

    def exists(self, product_id: int) -> bool:
        res = self.db.table("products").select("id").eq("id", product_id).execute()
        return bool(res.data)

    def get_by_id(self, product_id: int) -> Optional[dict]:
        res = self.db.table("products").select(PRODUCT_COLUMNS).eq("id", product_id).execute()
        if not res.data:
            return None
        row = dict(res.data[0])
        category = row.pop("categories", None) or {}
        row["category_name"] = category.get("name")
        return row

    def create(self, fields: ProductFields) -> Optional[dict]:
        data = fields.model_dump()
        data["created_at"] = _now()
        res = self.db.table("products").insert(data).execute()
        return res.data[0] if res.data else None

    def update(self, product_id: int, fields: ProductFields) -> Optional[dict]:
        res = self.db.table("products").update(fields.model_dump()).eq("id", product_id).execute()
        return res.data[0] if res.data else None

    def delete(self, product_id: int) -> bool:
        res = self.db.table("products").delete().eq("id", product_id).execute()
        return bool(res.data)


class ImageRepository:
    """Per-product image rows; exactly one row per product has is_main=true at rest."""

    def __init__(self):
        self.db = get_supabase_client()

    def list_by_product(self, product_id: int) -> List[ImageRecord]:
        """Main image first, then additional images by creation time."""
        res = (
            self.db.table("images")
            .select(IMAGE_COLUMNS)
            .eq("product_id", product_id)
            .order("is_main", desc=True)
            .order("created_at")
            .execute()
        )
        return [ImageRecord(**row) for row in (res.data or [])]

    def get(self, image_id: int) -> Optional[ImageRecord]:
        res = self.db.table("images").select(IMAGE_COLUMNS).eq("id", image_id).execute()
        return ImageRecord(**res.data[0]) if res.data else None

    def get_main(self, product_id: int) -> Optional[ImageRecord]:
        res = (
            self.db.table("images")
            .select(IMAGE_COLUMNS)
            .eq("product_id", product_id)
            .eq("is_main", True)
            .execute()
        )
        return ImageRecord(**res.data[0]) if res.data else None

    def insert_main(self, product_id: int, url: str) -> ImageRecord:
        row = {"product_id": product_id, "image_url": url, "is_main": True, "created_at": _now()}
        res = self.db.table("images").insert(row).execute()
        if not res.data:
            raise RuntimeError(f"Main image insert returned no row for product {product_id}")
        return ImageRecord(**res.data[0])

    def insert_additional(self, product_id: int, url: str) -> ImageRecord:
        return self.insert_additional_many(product_id, [url])[0]

    def insert_additional_many(self, product_id: int, urls: List[str]) -> List[ImageRecord]:
        """Batch insert; raises when the store does not confirm every row."""
        if not urls:
            return []
        now = _now()
        rows = [
            {"product_id": product_id, "image_url": url, "is_main": False, "created_at": now}
            for url in urls
        ]
        res = self.db.table("images").insert(rows).execute()
        inserted = res.data or []
        if len(inserted) != len(rows):
            raise RuntimeError(
                f"Additional image insert confirmed {len(inserted)} of {len(rows)} rows"
            )
        return [ImageRecord(**row) for row in inserted]

    def replace_main_url(self, product_id: int, url: str) -> ImageRecord:
        res = (
            self.db.table("images")
            .update({"image_url": url})
            .eq("product_id", product_id)
            .eq("is_main", True)
            .execute()
        )
        if not res.data:
            raise RuntimeError(f"Product {product_id} has no main image row to update")
        return ImageRecord(**res.data[0])

    def delete_chunk(self, ids: List[int]) -> List[int]:
        """Deletes one batch; returns the ids the store reports as deleted."""
        res = self.db.table("images").delete().in_("id", ids).execute()
        return [row["id"] for row in (res.data or [])]

    def delete_by_ids(
        self,
        ids: Iterable[int],
        policy: RetryPolicy,
        on_chunk_deleted: Optional[Callable[[List[int]], None]] = None,
    ) -> Dict[int, bool]:
        """
        Deletes rows in chunks of DELETE_CHUNK_SIZE, each chunk retried by ``policy``.

        Chunks run sequentially. When a chunk exhausts its retries the
        RetryExhaustedError propagates; rows removed by earlier chunks stay
        deleted. Returns per-id success (False for ids already gone).
        """
        ids = list(ids)
        results: Dict[int, bool] = {}
        for chunk in chunked(ids):
            deleted = set(policy.call(self.delete_chunk, chunk))
            for image_id in chunk:
                results[image_id] = image_id in deleted
            logger.info("Image chunk deleted", extra={"requested": len(chunk), "deleted": len(deleted)})
            if on_chunk_deleted:
                on_chunk_deleted([i for i in chunk if i in deleted])
        return results

    def delete_by_product(self, product_id: int) -> List[ImageRecord]:
        res = self.db.table("images").delete().eq("product_id", product_id).execute()
        return [ImageRecord(**row) for row in (res.data or [])]


class BlobCleanupQueueRepository:
    """Outbox of blob keys whose deletion must be retried by the cleanup worker."""

    TABLE = "blob_deletion_queue"

    def __init__(self):
        self.db = get_supabase_client()

    def enqueue(self, image_url: str, reason: str, error: Optional[str] = None) -> None:
        row = {
            "image_url": image_url,
            "reason": reason,
            "attempts": 0,
            "last_error": error,
            "created_at": _now(),
        }
        self.db.table(self.TABLE).insert(row).execute()
