"""Decoding of multipart/form-data bodies delivered in Lambda HTTP events."""

import base64
import mimetypes
from io import BytesIO
from typing import Dict, List, Optional, Union

from pydantic import BaseModel
from python_multipart import parse_form

from storefront.shared.errors import ValidationError


class UploadedFile(BaseModel):
    field_name: str
    file_name: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


FormValue = Union[str, UploadedFile]


class FormData:
    """Multi-valued form: every field name maps to the list of its values in order."""

    def __init__(self, values: Optional[Dict[str, List[FormValue]]] = None) -> None:
        self._values: Dict[str, List[FormValue]] = values or {}

    def add(self, name: str, value: FormValue) -> None:
        self._values.setdefault(name, []).append(value)

    def get(self, name: str) -> Optional[FormValue]:
        values = self._values.get(name)
        return values[0] if values else None

    def get_all(self, name: str) -> List[FormValue]:
        return list(self._values.get(name, []))

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def files(self, name: str) -> List[UploadedFile]:
        return [v for v in self.get_all(name) if isinstance(v, UploadedFile)]


def _header(event: dict, name: str) -> Optional[str]:
    headers = event.get("headers") or {}
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def _raw_body(event: dict) -> bytes:
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        return base64.b64decode(body)
    return body.encode("utf-8") if isinstance(body, str) else body


def parse_multipart_event(event: dict) -> FormData:
    content_type = _header(event, "content-type")
    if not content_type or not content_type.lower().startswith("multipart/form-data"):
        raise ValidationError("Expected multipart/form-data body")

    raw = _raw_body(event)
    form = FormData()

    def on_field(field) -> None:
        name = field.field_name.decode("utf-8")
        value = field.value.decode("utf-8") if field.value is not None else ""
        form.add(name, value)

    def on_file(file) -> None:
        name = file.field_name.decode("utf-8")
        file_name = file.file_name.decode("utf-8") if file.file_name else ""
        file.file_object.seek(0)
        content = file.file_object.read()
        declared = (file.content_type or "").split(";")[0].strip()
        guessed, _ = mimetypes.guess_type(file_name)
        form.add(
            name,
            UploadedFile(
                field_name=name,
                file_name=file_name,
                content_type=declared or guessed or "application/octet-stream",
                content=content,
            ),
        )

    headers = {"Content-Type": content_type, "Content-Length": str(len(raw))}
    try:
        parse_form(headers, BytesIO(raw), on_field, on_file)
    except ValidationError:
        raise
    except Exception as e:
        raise ValidationError("Malformed multipart body", details={"error": str(e)}) from e
    return form
