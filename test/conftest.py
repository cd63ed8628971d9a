import os

# Configure a fake Supabase project BEFORE any imports
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-test-key")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "service-test-key")
os.environ.setdefault("SUPABASE_BUCKET", "service-images")

from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from servicefinder.app import app, directory
from factories import make_listing


@pytest.fixture
def sample_listings():
    return [
        make_listing("l1", "Joe's Plumbing", "plumbing", "Cape Town", 5, "2024-03-01T10:00:00+00:00"),
        make_listing("l2", "Bright Sparks", "electrical", "Durban", 3, "2024-01-15T10:00:00+00:00"),
        make_listing("l3", "apex carpentry", "carpentry", "Cape Town", 4, "2024-02-10T10:00:00Z"),
        make_listing(
            "l4", "Clean Sweep", "cleaning", "Pretoria", 2, "2023-12-01T10:00:00+00:00",
            description="Carpets, windows and plumbing fixtures scrubbed",
        ),
    ]


@pytest.fixture
def supabase_client():
    """Mocked Supabase client returned by every get_client() call."""
    client = MagicMock(name="supabase_client")
    with patch("servicefinder.services.supabase_service.get_client", return_value=client):
        yield client


@pytest.fixture
def auth_client():
    client = MagicMock(name="supabase_auth_client")
    with patch("servicefinder.services.supabase_service.get_auth_client", return_value=client):
        yield client


@pytest.fixture
def loaded_directory(sample_listings):
    previous = directory.listings
    directory.listings = list(sample_listings)
    directory.error = None
    yield directory
    directory.listings = previous


@pytest.fixture
def signed_in_user():
    user = {"id": "user-1", "email": "ana@example.com", "display_name": "Ana"}
    with patch("servicefinder.core.auth.get_user_from_token", return_value=user) as mock_verify:
        yield mock_verify


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

