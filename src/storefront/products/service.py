import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from aws_lambda_powertools import Logger

from storefront.shared.auth import Identity
from storefront.shared.errors import (
    DataIntegrityError,
    InternalError,
    MissingMainImageError,
    ProductNotFoundError,
    ValidationError,
)
from storefront.shared.forms import UploadedFile
from storefront.shared.retry import RetryPolicy
from storefront.shared.storage import ADDITIONAL_FOLDER, MAIN_FOLDER, BlobGateway, StoredBlob
from storefront.products.audit import AuditLogWriter
from storefront.products.media import (
    DeletionExecutor,
    parse_keep_ids,
    plan_deletions,
    validate_keep_list,
)
from storefront.products.repository import (
    BlobCleanupQueueRepository,
    ImageRepository,
    ProductRepository,
)
from storefront.products.schemas import (
    ImageRecord,
    ImageView,
    ProductCreateRequest,
    ProductImages,
    ProductResponse,
    ProductUpdateRequest,
)

logger = Logger(service="products")

UPLOAD_WORKERS = 4


class ProductService:
    def __init__(self):
        self.repo = ProductRepository()
        self.images = ImageRepository()
        self.blobs = BlobGateway()
        self.cleanup_queue = BlobCleanupQueueRepository()
        self.policy = RetryPolicy()
        self.executor = DeletionExecutor(
            images=self.images,
            blobs=self.blobs,
            audit=AuditLogWriter(self.policy),
            cleanup_queue=self.cleanup_queue,
            policy=self.policy,
        )

    # --- read ---

    def get_product(self, product_id: int) -> dict:
        product = self.repo.get_by_id(product_id)
        if not product:
            raise ProductNotFoundError(details={"productId": product_id})
        images = self.images.list_by_product(product_id)
        return self._build_response(product, images)

    def _build_response(self, product: dict, images: List[ImageRecord]) -> dict:
        main = next((img for img in images if img.is_main), None)
        if main is None:
            raise DataIntegrityError(
                details={"productId": product["id"], "storedImages": len(images)}
            )
        response = ProductResponse(
            **product,
            images=ProductImages(
                main=ImageView(id=main.id, url=main.image_url, is_main=True),
                additional=[
                    ImageView(id=img.id, url=img.image_url, is_main=False)
                    for img in images
                    if not img.is_main
                ],
            ),
        )
        return response.model_dump()

    # --- create ---

    def create_product(self, request: ProductCreateRequest) -> dict:
        if request.main_image is None or request.main_image.size == 0:
            raise MissingMainImageError()

        main_blob = self.blobs.upload(request.main_image, MAIN_FOLDER)
        try:
            additional = self._upload_all(request.additional_images, ADDITIONAL_FOLDER)
        except Exception:
            self._discard_uploads([main_blob])
            raise
        uploaded = [main_blob, *additional]

        product = self.repo.create(request.fields)
        if not product or not product.get("id"):
            self._discard_uploads(uploaded)
            raise InternalError("Product insert returned no id")
        product_id = product["id"]
        try:
            self.images.insert_main(product_id, main_blob.url)
            self.images.insert_additional_many(product_id, [b.url for b in additional])
        except Exception as e:
            logger.error("Image insert failed, rolling back product", extra={"product_id": product_id})
            self.images.delete_by_product(product_id)
            self.repo.delete(product_id)
            self._discard_uploads(uploaded)
            raise InternalError("Failed to register product images", details={"error": str(e)}) from e

        logger.info(
            "Product created",
            extra={"product_id": product_id, "additional_images": len(additional)},
        )
        return self.get_product(product_id)

    # --- update ---

    def update_product(self, product_id: int, request: ProductUpdateRequest, admin: Identity) -> dict:
        logger.append_keys(trace_id=uuid.uuid4().hex[:9], product_id=product_id)
        try:
            return self._update_product(product_id, request, admin)
        finally:
            logger.remove_keys(["trace_id", "product_id"])

    def _update_product(self, product_id: int, request: ProductUpdateRequest, admin: Identity) -> dict:
        if request.main_image is not None and request.main_image.size == 0:
            raise ValidationError("Empty main image file")
        if not self.repo.exists(product_id):
            raise ProductNotFoundError(details={"productId": product_id})

        current = self.images.list_by_product(product_id)
        requested = parse_keep_ids(request.keep_image_ids or [])
        valid_keep_ids = validate_keep_list(
            requested,
            {img.id for img in current},
            has_new_additional=bool(request.additional_images),
        )
        logger.info(
            "Product update started",
            extra={
                "main_image_replaced": request.main_image is not None,
                "additional_uploads": len(request.additional_images),
                "valid_keep_ids": sorted(valid_keep_ids),
                "reconcile": request.keep_image_ids is not None,
            },
        )

        if request.main_image is not None:
            self._replace_main_image(product_id, request.main_image)

        added = self._add_additional_images(product_id, request.additional_images)

        deleted_count = 0
        if request.keep_image_ids is not None:
            existing = self.images.list_by_product(product_id)
            targets = plan_deletions(existing, valid_keep_ids, {img.image_url for img in added})
            result = self.executor.execute(targets, admin.user_id, product_id, valid_keep_ids)
            deleted_count = result.deleted_count

        self.repo.update(product_id, request.fields)

        try:
            response = self.get_product(product_id)
        except DataIntegrityError as e:
            raise InternalError("Product has no main image after update", details=e.details) from e

        logger.info(
            "Product updated",
            extra={"additional_added": len(added), "images_deleted": deleted_count},
        )
        return response

    def _replace_main_image(self, product_id: int, file: UploadedFile) -> None:
        old_main = self.images.get_main(product_id)
        stored = self.blobs.upload(file, MAIN_FOLDER)
        try:
            if old_main:
                self.images.replace_main_url(product_id, stored.url)
            else:
                self.images.insert_main(product_id, stored.url)
        except Exception:
            self._discard_uploads([stored])
            raise
        if old_main and old_main.image_url != stored.url:
            self.executor.delete_blob(old_main.image_url, reason="replace_main")

    def _add_additional_images(self, product_id: int, files: List[UploadedFile]) -> List[ImageRecord]:
        if not files:
            return []
        stored = self._upload_all(files, ADDITIONAL_FOLDER)
        try:
            return self.images.insert_additional_many(product_id, [b.url for b in stored])
        except Exception:
            self._discard_uploads(stored)
            raise

    # --- delete ---

    def delete_product(self, product_id: int) -> dict:
        if not self.repo.exists(product_id):
            raise ProductNotFoundError(details={"productId": product_id})
        removed = self.images.delete_by_product(product_id)
        if not self.repo.delete(product_id):
            raise InternalError("Product delete was not confirmed", details={"productId": product_id})
        deferred = self.executor.delete_blobs([img.image_url for img in removed], reason="delete_product")
        logger.info(
            "Product deleted",
            extra={"product_id": product_id, "images": len(removed), "deferred_blob_deletes": len(deferred)},
        )
        return {"success": True, "deletedId": product_id}

    # --- helpers ---

    def _upload_all(self, files: List[UploadedFile], folder: str) -> List[StoredBlob]:
        """Uploads in parallel; on any failure the blobs already stored are discarded."""
        if not files:
            return []
        workers = max(1, min(UPLOAD_WORKERS, len(files)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.blobs.upload, f, folder) for f in files]
        stored: List[StoredBlob] = []
        failure: Optional[Exception] = None
        for future in futures:
            try:
                stored.append(future.result())
            except Exception as e:
                failure = failure or e
        if failure:
            self._discard_uploads(stored)
            raise failure
        return stored

    def _discard_uploads(self, blobs: List[StoredBlob]) -> None:
        if blobs:
            logger.warning("Discarding uploads of failed request", extra={"keys": [b.key for b in blobs]})
            self.executor.delete_blobs([b.url for b in blobs], reason="discard_upload")
