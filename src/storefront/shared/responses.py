import json
import os
from decimal import Decimal
from datetime import datetime, date

from pydantic import ValidationError as PydanticValidationError

from storefront.shared.errors import StorefrontError, ValidationError


class DecimalEncoder(json.JSONEncoder):
    """
    JSON encoder for values coming back from the database.

    Converts:
    - Decimal to int (whole values) or float
    - datetime/date to ISO 8601 string
    """
    def default(self, obj):
        if isinstance(obj, Decimal):
            if obj % 1 == 0:
                return int(obj)
            return float(obj)
        elif isinstance(obj, (datetime, date)):
            return obj.isoformat()
        return super().default(obj)


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Expose-Headers": "Content-Length",
}


def http_response(status_code: int, body: dict) -> dict:
    headers = {"Content-Type": "application/json", **CORS_HEADERS}
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": json.dumps(body, cls=DecimalEncoder)
    }


def options_response() -> dict:
    """Preflight CORS response."""
    return {
        "statusCode": 204,
        "headers": {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
            "Access-Control-Allow-Headers": "*",
            "Access-Control-Max-Age": "86400",
        },
        "body": ""
    }


def is_production() -> bool:
    return os.environ.get("ENVIRONMENT", "production") == "production"


def error_response(error: StorefrontError) -> dict:
    """Renders a StorefrontError; diagnostic details are omitted in production."""
    body = {"code": error.code, "message": error.message}
    if error.details and not is_production():
        body["details"] = error.details
    return http_response(error.status_code, {"error": body})


def validation_error_response(exc: PydanticValidationError) -> dict:
    # Validation details are user-facing and are kept in every environment.
    errors = [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    error = ValidationError("Invalid input", details={"fields": errors})
    body = {"code": error.code, "message": error.message, "details": error.details}
    return http_response(error.status_code, {"error": body})
