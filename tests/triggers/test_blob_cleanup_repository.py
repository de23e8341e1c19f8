from datetime import datetime, timezone

import pytest
from unittest.mock import patch, MagicMock

from storefront.shared.retry import RetryPolicy
from storefront.triggers.blob_cleanup.repository import REFERENCE_PAGE_SIZE, BlobCleanupRepository
from storefront.triggers.blob_cleanup.service import BlobCleanupService

SERVER_ROW_CAP = 1000


def _url(i: int) -> str:
    return f"https://media.example.com/products/additional/{i:05d}.jpg"


@pytest.fixture
def mock_supabase_client():
    with patch("storefront.triggers.blob_cleanup.repository.get_supabase_client") as mock_get_client:
        mock_client = MagicMock()
        mock_get_client.return_value = mock_client
        yield mock_client


def _serve_image_rows(client: MagicMock, urls, row_cap: int = SERVER_ROW_CAP) -> MagicMock:
    """Answers ``.range(start, end)`` like PostgREST: inclusive bounds, at most ``row_cap`` rows."""
    rows = [{"image_url": url} for url in urls]
    query = client.table.return_value.select.return_value.order.return_value

    def _range(start, end):
        page = rows[start:min(end + 1, start + row_cap)]
        return MagicMock(execute=MagicMock(return_value=MagicMock(data=page)))

    query.range.side_effect = _range
    return query


class TestAllReferencedUrls:
    def test_reads_past_the_first_page(self, mock_supabase_client: MagicMock) -> None:
        urls = [_url(i) for i in range(REFERENCE_PAGE_SIZE + 500)]
        query = _serve_image_rows(mock_supabase_client, urls)

        referenced = BlobCleanupRepository().all_referenced_urls()

        assert referenced == set(urls)
        starts = [c.args[0] for c in query.range.call_args_list]
        assert starts == [0, REFERENCE_PAGE_SIZE, REFERENCE_PAGE_SIZE + 500]

    def test_server_cap_below_page_size_still_reads_everything(self, mock_supabase_client: MagicMock) -> None:
        urls = [_url(i) for i in range(1200)]
        _serve_image_rows(mock_supabase_client, urls, row_cap=250)

        assert BlobCleanupRepository().all_referenced_urls() == set(urls)

    def test_empty_table(self, mock_supabase_client: MagicMock) -> None:
        _serve_image_rows(mock_supabase_client, [])

        assert BlobCleanupRepository().all_referenced_urls() == set()


class TestSweepWithLargeCatalog:
    def test_referenced_blobs_beyond_first_page_survive(self, mock_supabase_client: MagicMock) -> None:
        """
        Scenario: 1500 image rows (more than one response) and the same 1500 blobs in the bucket.
        Expected: no blob is treated as an orphan.
        """
        urls = [_url(i) for i in range(1500)]
        _serve_image_rows(mock_supabase_client, urls)
        old = "2024-01-01T00:00:00+00:00"

        with patch("storefront.triggers.blob_cleanup.service.BlobGateway") as mock_gateway_cls:
            blobs = MagicMock()
            blobs.list_objects.side_effect = lambda folder: (
                [{"key": f"products/additional/{i:05d}.jpg", "created_at": old} for i in range(1500)]
                if folder == "products/additional" else []
            )
            mock_gateway_cls.return_value = blobs
            mock_gateway_cls.key_from_url.side_effect = lambda url: url.split("media.example.com/")[-1]

            service = BlobCleanupService(policy=RetryPolicy(sleep=lambda s: None))
            result = service.sweep_orphans(now=datetime(2024, 6, 1, tzinfo=timezone.utc))

        assert result == {"orphans_found": 0, "orphans_deleted": 0}
        blobs.delete.assert_not_called()


class TestQueueRows:
    def test_list_pending_oldest_first(self, mock_supabase_client: MagicMock) -> None:
        query = mock_supabase_client.table.return_value.select.return_value
        query.order.return_value.limit.return_value.execute.return_value = MagicMock(data=[{"id": 1}])

        assert BlobCleanupRepository().list_pending(10) == [{"id": 1}]
        mock_supabase_client.table.assert_called_with("blob_deletion_queue")
        query.order.assert_called_once_with("created_at")
        query.order.return_value.limit.assert_called_once_with(10)

    def test_record_failure_updates_attempts(self, mock_supabase_client: MagicMock) -> None:
        BlobCleanupRepository().record_failure(3, 2, "timeout")

        update = mock_supabase_client.table.return_value.update
        update.assert_called_once_with({"attempts": 2, "last_error": "timeout"})
        update.return_value.eq.assert_called_once_with("id", 3)

    def test_batch_size_from_environment(self, mock_supabase_client: MagicMock, monkeypatch) -> None:
        monkeypatch.setenv("CLEANUP_BATCH_SIZE", "25")

        assert BlobCleanupRepository().batch_size() == 25
