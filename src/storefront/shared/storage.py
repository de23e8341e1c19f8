"""
Blob gateway over the Supabase Storage bucket that holds product media.

Keys look like ``<folder>/<generated-id>.<ext>``; public URLs are derived from
``STORAGE_PUBLIC_DOMAIN`` as ``https://<domain>/<key>``. Expects env:
SUPABASE_URL, SUPABASE_KEY, STORAGE_PUBLIC_DOMAIN; optional STORAGE_BUCKET.
"""

import os
import uuid
from typing import List, Optional
from urllib.parse import urlparse

from aws_lambda_powertools import Logger
from pydantic import BaseModel

from storefront.shared.database import get_supabase_client
from storefront.shared.errors import BlobDeleteError, UploadError
from storefront.shared.forms import UploadedFile

logger = Logger(service="storage")

DEFAULT_BUCKET = "product-images"
MAIN_FOLDER = "products/main"
ADDITIONAL_FOLDER = "products/additional"
LIST_PAGE_SIZE = 1000


class StoredBlob(BaseModel):
    url: str
    key: str


def _is_not_found(error: Exception) -> bool:
    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    if str(status) == "404":
        return True
    text = str(error).lower()
    return "not found" in text or "no such key" in text


class BlobGateway:
    def __init__(self, bucket: Optional[str] = None, public_domain: Optional[str] = None) -> None:
        self.db = get_supabase_client()
        self.bucket = bucket or os.environ.get("STORAGE_BUCKET") or DEFAULT_BUCKET
        self.public_domain = public_domain or os.environ.get("STORAGE_PUBLIC_DOMAIN")

    def _bucket(self):
        return self.db.storage.from_(self.bucket)

    @staticmethod
    def generate_key(folder: str, file_name: str) -> str:
        ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else "bin"
        return f"{folder.strip('/')}/{uuid.uuid4().hex}.{ext}"

    def public_url(self, key: str) -> str:
        if not self.public_domain:
            raise ValueError("STORAGE_PUBLIC_DOMAIN is not set")
        domain = self.public_domain.replace("https://", "").replace("http://", "").rstrip("/")
        return f"https://{domain}/{key}"

    @staticmethod
    def key_from_url(key_or_url: str) -> str:
        """Accepts a bare key or a public URL and returns the bucket key."""
        if key_or_url.startswith("http"):
            return urlparse(key_or_url).path.lstrip("/")
        return key_or_url.lstrip("/")

    def put(self, key: str, content: bytes, content_type: str) -> None:
        self._bucket().upload(key, content, {"content-type": content_type, "upsert": "false"})

    def upload(self, file: UploadedFile, folder: str) -> StoredBlob:
        key = self.generate_key(folder, file.file_name)
        try:
            self.put(key, file.content, file.content_type)
        except Exception as e:
            logger.error("Upload failed", extra={"key": key, "error": str(e)})
            raise UploadError(details={"key": key, "error": str(e)}) from e
        url = self.public_url(key)
        logger.info("Upload stored", extra={"key": key, "size": len(file.content)})
        return StoredBlob(url=url, key=key)

    def get(self, key_or_url: str) -> Optional[bytes]:
        key = self.key_from_url(key_or_url)
        try:
            return self._bucket().download(key)
        except Exception as e:
            if _is_not_found(e):
                return None
            raise

    def delete(self, key_or_url: str) -> None:
        """Deletes one blob. A missing key is not an error."""
        key = self.key_from_url(key_or_url)
        try:
            self._bucket().remove([key])
        except Exception as e:
            if _is_not_found(e):
                logger.warning("Blob already gone", extra={"key": key})
                return
            raise BlobDeleteError(details={"key": key, "error": str(e)}) from e
        logger.info("Blob deleted", extra={"key": key})

    def list_objects(self, folder: str) -> List[dict]:
        """Lists every object under ``folder`` (recursive) as ``{"key", "created_at"}``."""
        objects: List[dict] = []

        def _list_recursive(prefix: str) -> None:
            for item in self._list_page_by_page(prefix.rstrip("/")):
                name = item.get("name", "")
                if not name or name == ".emptyFolderPlaceholder":
                    continue
                full_path = f"{prefix}{name}"
                if item.get("id") is not None:
                    objects.append({"key": full_path, "created_at": item.get("created_at")})
                else:
                    _list_recursive(f"{full_path}/")

        _list_recursive(f"{folder.strip('/')}/")
        return objects

    def _list_page_by_page(self, path: str) -> List[dict]:
        """Entries directly under ``path``; the bucket answers at most one page per call."""
        entries: List[dict] = []
        offset = 0
        while True:
            page = self._bucket().list(path, {"limit": LIST_PAGE_SIZE, "offset": offset}) or []
            if not page:
                return entries
            entries.extend(page)
            offset += len(page)
