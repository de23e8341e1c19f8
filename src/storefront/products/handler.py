"""
Handler for the products function.

Routes:
- GET    /products/{id}  Public: product with main and additional images
- POST   /products       Admin: create (multipart: fields, mainImage, additionalImages)
- PUT    /products/{id}  Admin: edit (multipart: fields, mainImage, additionalImages, keepImageIds)
- DELETE /products/{id}  Admin: delete product, its image rows and blobs
"""

from typing import Optional

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError as PydanticValidationError

from storefront.shared.auth import require_admin
from storefront.shared.errors import InternalError, StorefrontError, ValidationError
from storefront.shared.forms import parse_multipart_event
from storefront.shared.responses import (
    error_response,
    http_response,
    options_response,
    validation_error_response,
)
from storefront.products.schemas import ProductCreateRequest, ProductUpdateRequest
from storefront.products.service import ProductService

logger = Logger(service="products")

# Codes an edit may answer with; anything else is reported as INTERNAL_ERROR.
UPDATE_ERROR_CODES = {
    "UNAUTHORIZED",
    "FORBIDDEN",
    "DANGEROUS_OPERATION",
    "VALIDATION_ERROR",
    "PRODUCT_NOT_FOUND",
    "INTERNAL_ERROR",
}


def _product_id(event: dict) -> Optional[str]:
    path_params = event.get("pathParameters") or {}
    product_id = path_params.get("id") or path_params.get("proxy")
    if not product_id:
        raw_path = event.get("rawPath", "")
        tail = raw_path.rstrip("/").split("/")[-1]
        product_id = tail if tail.isdigit() else None
    if product_id and "/" in str(product_id):
        product_id = str(product_id).split("/")[-1]
    return product_id


def _parse_id(product_id: Optional[str]) -> int:
    if not product_id or not str(product_id).isdigit() or int(product_id) <= 0:
        raise ValidationError("Product id is required", details={"id": product_id})
    return int(product_id)


@logger.inject_lambda_context
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    method = event.get("requestContext", {}).get("http", {}).get("method")

    if method == "OPTIONS":
        return options_response()

    try:
        product_id = _product_id(event)

        if method == "GET":
            service = ProductService()
            return http_response(200, service.get_product(_parse_id(product_id)))

        if method == "POST" and not product_id:
            require_admin(event)
            request = ProductCreateRequest.from_form(parse_multipart_event(event))
            service = ProductService()
            return http_response(201, service.create_product(request))

        if method == "PUT":
            return _update(event, product_id)

        if method == "DELETE":
            require_admin(event)
            service = ProductService()
            return http_response(200, service.delete_product(_parse_id(product_id)))

        return http_response(405, {"error": {"code": "METHOD_NOT_ALLOWED", "message": f"Method {method} not allowed"}})

    except PydanticValidationError as e:
        logger.warning("Validation failed", extra={"errors": e.error_count()})
        return validation_error_response(e)
    except StorefrontError as e:
        logger.warning("Request rejected", extra={"code": e.code, "error": e.message})
        return error_response(e)
    except Exception as e:
        logger.exception("Unhandled error")
        return error_response(InternalError(details={"error": str(e)}))


def _update(event: dict, raw_id: Optional[str]) -> dict:
    admin = require_admin(event)
    product_id = _parse_id(raw_id)
    request = ProductUpdateRequest.from_form(parse_multipart_event(event))
    service = ProductService()
    try:
        return http_response(200, service.update_product(product_id, request, admin))
    except StorefrontError as e:
        if e.code in UPDATE_ERROR_CODES:
            raise
        logger.exception("Product update failed", extra={"code": e.code})
        raise InternalError(e.message, details={"cause": e.code, **e.details}) from e
