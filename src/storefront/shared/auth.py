"""Identity resolution: bearer token -> Supabase user -> profile role."""

from typing import Optional

from aws_lambda_powertools import Logger
from pydantic import BaseModel

from storefront.shared.database import get_supabase_client
from storefront.shared.errors import ForbiddenError, UnauthorizedError

logger = Logger(service="auth")

ADMIN_ROLE = "admin"


class Identity(BaseModel):
    user_id: str
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def _bearer_token(event: dict) -> Optional[str]:
    headers = event.get("headers") or {}
    value = headers.get("authorization") or headers.get("Authorization") or ""
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_identity(event: dict) -> Optional[Identity]:
    """Returns the caller's identity, or None when the request is anonymous or the token is invalid."""
    token = _bearer_token(event)
    if not token:
        return None
    db = get_supabase_client()
    try:
        res = db.auth.get_user(token)
    except Exception as e:
        logger.warning("Token rejected", extra={"error": str(e)})
        return None
    user = getattr(res, "user", None)
    if not user:
        return None
    profile = db.table("profiles").select("role").eq("id", user.id).execute()
    role = profile.data[0].get("role") if profile.data else None
    return Identity(user_id=str(user.id), role=role)


def require_admin(event: dict) -> Identity:
    identity = resolve_identity(event)
    if identity is None:
        raise UnauthorizedError()
    if not identity.is_admin:
        raise ForbiddenError()
    return identity
