from dataclasses import dataclass

import pytest

from storefront.shared.database import reset_supabase_client


@pytest.fixture(autouse=True)
def supabase_env(monkeypatch):
    """Every test runs with fake credentials and a fresh client cache."""
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("SUPABASE_KEY", "service-role-key")
    monkeypatch.setenv("STORAGE_BUCKET", "product-images")
    monkeypatch.setenv("STORAGE_PUBLIC_DOMAIN", "media.example.com")
    monkeypatch.setenv("ENVIRONMENT", "development")
    reset_supabase_client()
    yield
    reset_supabase_client()


@pytest.fixture
def lambda_context():
    @dataclass
    class LambdaContext:
        function_name: str = "products"
        memory_limit_in_mb: int = 256
        invoked_function_arn: str = "arn:aws:lambda:us-east-1:123456789012:function:products"
        aws_request_id: str = "52fdfc07-2182-454f-963f-5f0f9a621d72"

    return LambdaContext()
