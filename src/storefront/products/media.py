"""
Gallery reconciliation between the ``images`` table and the storage bucket.

The relational store is the source of truth for which images exist. Planning
is pure (``parse_keep_ids``, ``validate_keep_list``, ``plan_deletions``); the
``DeletionExecutor`` applies a plan: image rows are deleted chunk by chunk,
then the blobs of each deleted chunk are removed in parallel. A blob whose
deletion keeps failing is handed to the cleanup queue instead of failing the
request, since its row is already gone.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import AbstractSet, Any, FrozenSet, Iterable, List, Optional, Set

from aws_lambda_powertools import Logger
from pydantic import BaseModel

from storefront.shared.errors import DangerousOperationError, InternalError
from storefront.shared.retry import RetryExhaustedError, RetryPolicy
from storefront.shared.storage import BlobGateway
from storefront.products.audit import AuditLogWriter
from storefront.products.repository import BlobCleanupQueueRepository, ImageRepository
from storefront.products.schemas import ImageRecord

logger = Logger(service="products")

BLOB_DELETE_WORKERS = 8


def _coerce_id(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        number = value
    else:
        text = str(value).strip()
        try:
            number = int(text)
        except ValueError:
            try:
                as_float = float(text)
            except ValueError:
                return None
            if not as_float.is_integer():
                return None
            number = int(as_float)
    return number if number > 0 else None


def parse_keep_ids(raw: Iterable[Any]) -> FrozenSet[int]:
    """Coerces raw keep-list entries to positive ints; anything else is dropped."""
    parsed: Set[int] = set()
    dropped = []
    for value in raw:
        image_id = _coerce_id(value)
        if image_id is None:
            dropped.append(value)
        else:
            parsed.add(image_id)
    if dropped:
        logger.warning("Dropped malformed keep ids", extra={"dropped": [str(v) for v in dropped]})
    return frozenset(parsed)


def validate_keep_list(
    requested: AbstractSet[int],
    current_ids: AbstractSet[int],
    has_new_additional: bool,
) -> FrozenSet[int]:
    """
    Returns the ids that are both requested and owned by the product.

    Raises DangerousOperationError when nothing valid is kept while new
    additional images are attached: that combination would wipe the existing
    gallery and is almost always a client bug. Foreign ids are ignored.
    """
    valid = frozenset(requested) & frozenset(current_ids)
    ignored = set(requested) - valid
    if ignored:
        logger.warning("Ignoring keep ids not owned by product", extra={"ignored": sorted(ignored)})
    if not valid and has_new_additional:
        raise DangerousOperationError(
            details={"requestedKeepImageIds": sorted(requested), "currentImageIds": sorted(current_ids)}
        )
    return valid


def plan_deletions(
    existing: Iterable[ImageRecord],
    valid_keep_ids: AbstractSet[int],
    uploaded_urls: AbstractSet[str] = frozenset(),
) -> List[ImageRecord]:
    """Additional images that are neither kept nor uploaded by this request. Order is not significant."""
    return [
        image
        for image in existing
        if not image.is_main
        and image.id not in valid_keep_ids
        and image.image_url not in uploaded_urls
    ]


class ExecutorState(str, Enum):
    PLANNED = "PLANNED"
    METADATA_DELETING = "METADATA_DELETING"
    METADATA_DELETED = "METADATA_DELETED"
    BLOB_DELETING = "BLOB_DELETING"
    DONE = "DONE"
    ERROR = "ERROR"


class DeletionResult(BaseModel):
    state: ExecutorState
    deleted_ids: List[int] = []
    deferred_urls: List[str] = []
    elapsed_ms: int = 0
    audit_id: Optional[int] = None

    @property
    def deleted_count(self) -> int:
        return len(self.deleted_ids)


class DeletionExecutor:
    def __init__(
        self,
        images: Optional[ImageRepository] = None,
        blobs: Optional[BlobGateway] = None,
        audit: Optional[AuditLogWriter] = None,
        cleanup_queue: Optional[BlobCleanupQueueRepository] = None,
        policy: Optional[RetryPolicy] = None,
        max_workers: int = BLOB_DELETE_WORKERS,
    ):
        self.images = images or ImageRepository()
        self.blobs = blobs or BlobGateway()
        self.audit = audit or AuditLogWriter()
        self.cleanup_queue = cleanup_queue or BlobCleanupQueueRepository()
        self.policy = policy or RetryPolicy()
        self.max_workers = max_workers
        self.state = ExecutorState.PLANNED

    def _transition(self, state: ExecutorState) -> None:
        logger.debug("Deletion state", extra={"from": self.state.value, "to": state.value})
        self.state = state

    def execute(
        self,
        targets: List[ImageRecord],
        admin_id: str,
        product_id: int,
        valid_keep_ids: AbstractSet[int],
    ) -> DeletionResult:
        self.state = ExecutorState.PLANNED
        if not targets:
            self._transition(ExecutorState.DONE)
            return DeletionResult(state=self.state)

        entry = self.audit.open(admin_id, product_id, valid_keep_ids)
        started = time.monotonic()
        urls_by_id = {image.id: image.image_url for image in targets}
        deleted_ids: List[int] = []
        deferred: List[str] = []

        def on_chunk_deleted(chunk_ids: List[int]) -> None:
            deleted_ids.extend(chunk_ids)
            self._transition(ExecutorState.METADATA_DELETED)
            self._transition(ExecutorState.BLOB_DELETING)
            deferred.extend(self.delete_blobs([urls_by_id[i] for i in chunk_ids], reason="delete_images"))
            self._transition(ExecutorState.METADATA_DELETING)

        self._transition(ExecutorState.METADATA_DELETING)
        try:
            self.images.delete_by_ids(list(urls_by_id), self.policy, on_chunk_deleted=on_chunk_deleted)
        except RetryExhaustedError as e:
            self._transition(ExecutorState.ERROR)
            elapsed_ms = int((time.monotonic() - started) * 1000)
            self.audit.fail(entry, str(e.last_error), elapsed_ms, deleted_count=len(deleted_ids))
            logger.error(
                "Image metadata delete failed",
                extra={"product_id": product_id, "deleted_before_failure": len(deleted_ids), "error": str(e)},
            )
            raise InternalError(
                "Failed to delete image records",
                details={"deletedBeforeFailure": deleted_ids, "error": str(e.last_error)},
            ) from e

        elapsed_ms = int((time.monotonic() - started) * 1000)
        self._transition(ExecutorState.DONE)
        self.audit.succeed(entry, len(deleted_ids), elapsed_ms)
        logger.info(
            "Images reconciled",
            extra={
                "product_id": product_id,
                "deleted_count": len(deleted_ids),
                "deferred_blob_deletes": len(deferred),
                "elapsed_ms": elapsed_ms,
            },
        )
        return DeletionResult(
            state=self.state,
            deleted_ids=deleted_ids,
            deferred_urls=deferred,
            elapsed_ms=elapsed_ms,
            audit_id=entry.id,
        )

    def delete_blobs(self, urls: List[str], reason: str) -> List[str]:
        """Deletes blobs concurrently; returns the URLs handed to the cleanup queue."""
        if not urls:
            return []
        workers = max(1, min(self.max_workers, len(urls)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(lambda url: self.delete_blob(url, reason), urls))
        return [url for url, ok in zip(urls, outcomes) if not ok]

    def delete_blob(self, url: str, reason: str) -> bool:
        """Best-effort delete of one blob; False when it was deferred to the cleanup queue."""
        try:
            self.policy.call(self.blobs.delete, url)
            return True
        except RetryExhaustedError as e:
            logger.warning("Blob delete deferred", extra={"url": url, "error": str(e.last_error)})
            try:
                self.cleanup_queue.enqueue(url, reason, str(e.last_error))
            except Exception:
                logger.exception("Could not enqueue blob for cleanup", extra={"url": url})
            return False
