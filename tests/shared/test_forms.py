import base64

import pytest

from storefront.shared.errors import ValidationError
from storefront.shared.forms import FormData, UploadedFile, parse_multipart_event

BOUNDARY = "----storefrontboundary"


def _multipart(parts) -> bytes:
    chunks = []
    for name, value in parts:
        chunks.append(f"--{BOUNDARY}\r\n".encode())
        if isinstance(value, tuple):
            file_name, content, part_type = value if len(value) == 3 else (*value, "application/octet-stream")
            header = f'Content-Disposition: form-data; name="{name}"; filename="{file_name}"\r\n'
            if part_type:
                header += f"Content-Type: {part_type}\r\n"
            chunks.append(f"{header}\r\n".encode())
            chunks.append(content)
        else:
            chunks.append(f'Content-Disposition: form-data; name="{name}"\r\n\r\n{value}'.encode())
        chunks.append(b"\r\n")
    chunks.append(f"--{BOUNDARY}--\r\n".encode())
    return b"".join(chunks)


def _event(body: bytes, base64_encoded: bool = True, content_type: str = None) -> dict:
    return {
        "headers": {"content-type": content_type or f"multipart/form-data; boundary={BOUNDARY}"},
        "body": base64.b64encode(body).decode() if base64_encoded else body.decode(),
        "isBase64Encoded": base64_encoded,
    }


class TestParseMultipartEvent:
    def test_parses_fields_and_files(self) -> None:
        body = _multipart([
            ("name", "Camiseta"),
            ("price", "4990"),
            ("mainImage", ("frente.png", b"\x89PNG\r\n\x1a\nbytes", "image/png")),
            ("additionalImages", ("a.jpg", b"\xff\xd8a")),
            ("additionalImages", ("b.jpg", b"\xff\xd8b")),
            ("keepImageIds", "2"),
            ("keepImageIds", "4"),
        ])

        form = parse_multipart_event(_event(body))

        assert form.get("name") == "Camiseta"
        assert form.get_all("keepImageIds") == ["2", "4"]
        main = form.get("mainImage")
        assert isinstance(main, UploadedFile)
        assert main.file_name == "frente.png"
        assert main.content == b"\x89PNG\r\n\x1a\nbytes"
        assert main.content_type == "image/png"
        assert [f.file_name for f in form.files("additionalImages")] == ["a.jpg", "b.jpg"]

    def test_part_content_type_wins_over_file_name(self) -> None:
        body = _multipart([("mainImage", ("foto.jpg", b"RIFFwebp", "image/webp; charset=binary"))])

        main = parse_multipart_event(_event(body)).get("mainImage")

        assert main.content_type == "image/webp"

    def test_missing_part_content_type_falls_back_to_file_name(self) -> None:
        """
        Scenario: file parts sent without their own Content-Type header.
        Expected: type guessed from the extension, octet-stream when the extension is unknown.
        """
        body = _multipart([
            ("additionalImages", ("a.jpg", b"\xff\xd8a", None)),
            ("additionalImages", ("blob.zzz", b"raw", None)),
        ])

        files = parse_multipart_event(_event(body)).files("additionalImages")

        assert [f.content_type for f in files] == ["image/jpeg", "application/octet-stream"]

    def test_plain_text_body(self) -> None:
        body = _multipart([("name", "Boné"), ("mainImage", "unchanged")])

        form = parse_multipart_event(_event(body, base64_encoded=False))

        assert form.get("name") == "Boné"
        assert form.get("mainImage") == "unchanged"
        assert form.files("mainImage") == []

    def test_empty_field_is_present(self) -> None:
        form = parse_multipart_event(_event(_multipart([("keepImageIds", "")])))

        assert "keepImageIds" in form
        assert form.get_all("keepImageIds") == [""]

    def test_rejects_other_content_types(self) -> None:
        with pytest.raises(ValidationError):
            parse_multipart_event(_event(b"{}", content_type="application/json"))

    def test_rejects_missing_boundary(self) -> None:
        with pytest.raises(ValidationError):
            parse_multipart_event(_event(b"garbage", content_type="multipart/form-data"))


class TestFormData:
    def test_missing_field(self) -> None:
        form = FormData()

        assert form.get("name") is None
        assert form.get_all("name") == []
        assert "name" not in form
