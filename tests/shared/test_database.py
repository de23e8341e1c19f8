import pytest
from unittest.mock import patch

from storefront.shared.database import get_supabase_client, reset_supabase_client


class TestGetSupabaseClient:
    def test_missing_settings_raise(self, monkeypatch) -> None:
        monkeypatch.delenv("SUPABASE_KEY")

        with pytest.raises(ValueError):
            get_supabase_client()

    def test_client_is_cached_until_reset(self) -> None:
        with patch("storefront.shared.database.create_client") as mock_create:
            first = get_supabase_client()
            second = get_supabase_client()
            reset_supabase_client()
            get_supabase_client()

        assert first is second
        assert mock_create.call_count == 2
        mock_create.assert_called_with("https://project.supabase.co", "service-role-key")
