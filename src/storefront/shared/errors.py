"""
Error taxonomy for the storefront functions.

Every error that reaches a caller carries a stable ``code`` and an HTTP status;
handlers render them with ``shared.responses.error_response``.
"""

from typing import Any, Dict, Optional


class StorefrontError(Exception):
    """Base class for errors with a caller-facing code."""

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(StorefrontError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid input"


class MissingMainImageError(StorefrontError):
    status_code = 400
    code = "MISSING_MAIN_IMAGE"
    default_message = "A main image is required"


class UnauthorizedError(StorefrontError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Authentication required"


class ForbiddenError(StorefrontError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Administrator role required"


class ProductNotFoundError(StorefrontError):
    status_code = 404
    code = "PRODUCT_NOT_FOUND"
    default_message = "Product not found"


class DangerousOperationError(StorefrontError):
    """An empty keep-list arrived together with new uploads."""

    status_code = 422
    code = "DANGEROUS_OPERATION"
    default_message = (
        "Refusing to replace the whole gallery: no existing image was kept "
        "while new images were uploaded"
    )


class UploadError(StorefrontError):
    status_code = 502
    code = "UPLOAD_ERROR"
    default_message = "Failed to store file"


class BlobDeleteError(StorefrontError):
    status_code = 502
    code = "DELETE_ERROR"
    default_message = "Failed to delete file"


class DataIntegrityError(StorefrontError):
    code = "DATA_INTEGRITY_ERROR"
    default_message = "Product has no main image"


class InternalError(StorefrontError):
    pass
