"""
Audit trail for gallery reconciliations.

One ``admin_logs`` row per reconciliation that deletes images. The row is
inserted in ``processing`` state before anything is deleted and updated once
to ``success`` or ``error``; no other path touches it.
"""

import json
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from aws_lambda_powertools import Logger
from pydantic import BaseModel, ConfigDict, Field

from storefront.shared.database import get_supabase_client
from storefront.shared.retry import RetryExhaustedError, RetryPolicy

logger = Logger(service="products")

DELETE_IMAGES_ACTION = "delete_images"
TARGET_PRODUCT = "product"


class AuditStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    keep_image_ids: List[int] = Field(default_factory=list, alias="keepImageIds")
    start_time: str = Field(..., alias="startTime")
    deleted_count: Optional[int] = Field(None, alias="deletedCount")
    elapsed_ms: Optional[int] = Field(None, alias="elapsedMs")
    error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True, exclude_none=True))


class AuditEntry(BaseModel):
    id: int
    admin_id: str
    product_id: int
    status: AuditStatus


class AuditLogWriter:
    TABLE = "admin_logs"

    def __init__(self, policy: Optional[RetryPolicy] = None):
        self.db = get_supabase_client()
        self.policy = policy or RetryPolicy()

    def open(self, admin_id: str, product_id: int, keep_image_ids: Iterable[int]) -> AuditEntry:
        status = AuditStatus(
            status="processing",
            keep_image_ids=sorted(keep_image_ids),
            start_time=datetime.now(timezone.utc).isoformat(),
        )
        row = {
            "admin_id": admin_id,
            "action": DELETE_IMAGES_ACTION,
            "target_type": TARGET_PRODUCT,
            "target_id": product_id,
            "description": status.to_json(),
            "created_at": status.start_time,
        }
        audit_id = self._insert(row)
        return AuditEntry(id=audit_id, admin_id=admin_id, product_id=product_id, status=status)

    def succeed(self, entry: AuditEntry, deleted_count: int, elapsed_ms: int) -> None:
        status = entry.status.model_copy(
            update={"status": "success", "deleted_count": deleted_count, "elapsed_ms": elapsed_ms}
        )
        self._close(entry, status)

    def fail(self, entry: AuditEntry, error: str, elapsed_ms: int, deleted_count: int = 0) -> None:
        status = entry.status.model_copy(
            update={
                "status": "error",
                "error": error,
                "elapsed_ms": elapsed_ms,
                "deleted_count": deleted_count,
            }
        )
        self._close(entry, status)

    def _close(self, entry: AuditEntry, status: AuditStatus) -> None:
        try:
            self.policy.call(self._write_status, entry.id, status)
        except RetryExhaustedError as e:
            logger.error(
                "Audit log update lost",
                extra={"audit_id": entry.id, "status": status.status, "error": str(e.last_error)},
            )
            return
        entry.status = status

    def _insert(self, row: dict) -> int:
        res = self.db.table(self.TABLE).insert(row).execute()
        if not res.data:
            raise RuntimeError("Audit log insert returned no row")
        return res.data[0]["id"]

    def _write_status(self, audit_id: int, status: AuditStatus) -> None:
        self.db.table(self.TABLE).update({"description": status.to_json()}).eq("id", audit_id).execute()
