from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from storefront.shared.forms import FormData, UploadedFile

PRODUCT_FIELDS = ("name", "description", "price", "stock", "category_id")


def _blank_to_none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


class ProductFields(BaseModel):
    """Scalar product fields as sent by the admin form."""

    model_config = {"extra": "forbid"}

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: int = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    category_id: Optional[int] = Field(None, gt=0)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        return v.strip() if isinstance(v, str) else v

    @field_validator("stock", mode="before")
    @classmethod
    def default_stock(cls, v: Any) -> Any:
        return 0 if _blank_to_none(v) is None else v

    @field_validator("category_id", mode="before")
    @classmethod
    def blank_category(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @classmethod
    def from_form(cls, form: FormData) -> "ProductFields":
        raw = {}
        for name in PRODUCT_FIELDS:
            value = form.get(name)
            if isinstance(value, UploadedFile):
                value = None
            if value is not None:
                raw[name] = value
        return cls.model_validate(raw)


class ImageRecord(BaseModel):
    """Row of the ``images`` table."""

    id: int
    product_id: int
    image_url: str
    is_main: bool
    created_at: Optional[str] = None


class ImageView(BaseModel):
    id: int
    url: str
    is_main: bool


class ProductImages(BaseModel):
    main: ImageView
    additional: List[ImageView] = []


class ProductResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: int
    stock: int
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    created_at: Optional[str] = None
    images: ProductImages


class ProductCreateRequest(BaseModel):
    fields: ProductFields
    main_image: Optional[UploadedFile] = None
    additional_images: List[UploadedFile] = []

    @classmethod
    def from_form(cls, form: FormData) -> "ProductCreateRequest":
        main = form.get("mainImage")
        return cls(
            fields=ProductFields.from_form(form),
            main_image=main if isinstance(main, UploadedFile) else None,
            additional_images=[f for f in form.files("additionalImages") if f.size > 0],
        )


class ProductUpdateRequest(BaseModel):
    """
    Parsed edit form.

    ``keep_image_ids`` is None when the form carries no ``keepImageIds`` field
    at all; an explicitly empty keep-list arrives as a list with blank values.
    ``main_image`` is set only when a new file was uploaded; a string value in
    ``mainImage`` means "unchanged".
    """

    fields: ProductFields
    main_image: Optional[UploadedFile] = None
    additional_images: List[UploadedFile] = []
    keep_image_ids: Optional[List[str]] = None

    @classmethod
    def from_form(cls, form: FormData) -> "ProductUpdateRequest":
        main = form.get("mainImage")
        keep = None
        if "keepImageIds" in form:
            keep = [v for v in form.get_all("keepImageIds") if isinstance(v, str)]
        return cls(
            fields=ProductFields.from_form(form),
            main_image=main if isinstance(main, UploadedFile) else None,
            additional_images=[f for f in form.files("additionalImages") if f.size > 0],
            keep_image_ids=keep,
        )
