from types import SimpleNamespace
from unittest.mock import patch

import pytest

from fakes import (
    FakeAuditLogWriter,
    FakeBlobGateway,
    FakeImageRepository,
    FakeProductRepository,
    FakeQueue,
    no_sleep_policy,
)
from storefront.shared.auth import Identity


@pytest.fixture
def backend():
    """Fresh in-memory database, bucket, audit table and cleanup queue."""
    return SimpleNamespace(
        products=FakeProductRepository(),
        images=FakeImageRepository(),
        blobs=FakeBlobGateway(),
        audit=FakeAuditLogWriter(),
        queue=FakeQueue(),
    )


@pytest.fixture
def service(backend):
    with patch("storefront.products.service.ProductRepository", return_value=backend.products), \
         patch("storefront.products.service.ImageRepository", return_value=backend.images), \
         patch("storefront.products.service.BlobGateway", return_value=backend.blobs), \
         patch("storefront.products.service.BlobCleanupQueueRepository", return_value=backend.queue), \
         patch("storefront.products.service.AuditLogWriter", return_value=backend.audit), \
         patch("storefront.products.service.RetryPolicy", side_effect=no_sleep_policy):
        from storefront.products.service import ProductService
        yield ProductService()


@pytest.fixture
def seeded_product(backend):
    """Product 7 with main image 1 and additional images 2, 3, 4, rows and blobs in place."""
    backend.products.seed(7)
    urls = {}
    for image_id, folder in ((1, "products/main"), (2, "products/additional"),
                             (3, "products/additional"), (4, "products/additional")):
        urls[image_id] = backend.blobs.seed(f"{folder}/img{image_id}.jpg")
        backend.images.seed(7, image_id, urls[image_id], is_main=image_id == 1)
    return SimpleNamespace(id=7, urls=urls)


@pytest.fixture
def admin():
    return Identity(user_id="admin-uuid", role="admin")
