"""
Tests for the Replicate client wrapper.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from services.replicate_client import ReplicateClient, normalize_output


@pytest.fixture
def client():
    """ReplicateClient around a mocked SDK client, bypassing the singleton."""
    instance = object.__new__(ReplicateClient)
    instance._initialized = True
    instance.api_token = "r8_test"
    instance.logger = Mock()
    instance.client = Mock()
    instance.client.async_run = AsyncMock()
    instance.client.predictions.async_create = AsyncMock(return_value=Mock(id="pred-1", status="starting"))
    return instance


class TestNormalizeOutput:
    """Test cases for normalize_output()."""

    def test_streamed_tokens_joined(self):
        """Test that language model token lists become one string."""
        assert normalize_output(["{\"a\"", ": 1}"]) == "{\"a\": 1}"

    def test_url_lists_kept(self):
        """Test that lists of URLs are not joined."""
        urls = ["https://replicate.delivery/a.png", "https://replicate.delivery/b.png"]
        assert normalize_output(urls) == urls

    def test_generators_consumed(self):
        """Test that iterator outputs are materialised."""
        assert normalize_output(token for token in ["Hel", "lo"]) == "Hello"

    def test_plain_values_pass_through(self):
        """Test that strings and dicts are untouched."""
        assert normalize_output("https://replicate.delivery/v.mp4") == "https://replicate.delivery/v.mp4"
        assert normalize_output({"video": "x"}) == {"video": "x"}


class TestReplicateClient:
    """Test cases for ReplicateClient calls."""

    @pytest.mark.asyncio
    async def test_run_model_normalizes(self, client):
        """Test that run_model_async returns normalized output."""
        client.client.async_run.return_value = ["sce", "nes"]

        assert await client.run_model_async("meta/llama", {"prompt": "x"}) == "scenes"
        client.client.async_run.assert_awaited_once_with("meta/llama", input={"prompt": "x"})

    @pytest.mark.asyncio
    async def test_prediction_by_version(self, client):
        """Test that a pinned version is preferred over the model id."""
        prediction = await client.create_prediction_async("minimax/video-01", {"prompt": "x"}, version_id="abc")

        assert prediction.id == "pred-1"
        client.client.predictions.async_create.assert_awaited_once_with(version="abc", input={"prompt": "x"})

    @pytest.mark.asyncio
    async def test_prediction_by_model(self, client):
        """Test that the model id is used when no version is pinned."""
        await client.create_prediction_async("minimax/video-01", {"prompt": "x"})

        client.client.predictions.async_create.assert_awaited_once_with(
            model="minimax/video-01", input={"prompt": "x"}
        )
