"""Tests for the credential cache and the credential service client."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import httpx
import pytest

from supabase_mcp.config import BridgeConfig
from supabase_mcp.errors import ConfigurationError, CredentialFetchError, CredentialParseError
from supabase_mcp.models import CredentialMetadata, CredentialResponse
from supabase_mcp.services.credentials import CredentialCache, fetch_credentials


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeFetcher:
    def __init__(self, refs: list[str] | None = None) -> None:
        self.calls = 0
        self.refs = refs or []
        self.error: Exception | None = None

    async def __call__(self) -> CredentialResponse:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return CredentialResponse(
            credential=f"sbp_token_{self.calls}",
            metadata=CredentialMetadata(project_refs=self.refs, default_project="abc123"),
        )


def _make_cache() -> tuple[CredentialCache, FakeFetcher, FakeClock]:
    fetcher = FakeFetcher(refs=["abc123"])
    clock = FakeClock()
    return CredentialCache(fetcher=fetcher, clock=clock), fetcher, clock


class TestCredentialCache:
    @pytest.mark.asyncio()
    async def test_first_call_fetches_once(self) -> None:
        cache, fetcher, _ = _make_cache()
        creds = await cache.get_credentials()
        assert fetcher.calls == 1
        assert creds.access_token == "sbp_token_1"
        assert creds.project_refs == ("abc123",)
        assert creds.default_project == "abc123"

    @pytest.mark.asyncio()
    async def test_fresh_cache_is_reused(self) -> None:
        cache, fetcher, clock = _make_cache()
        first = await cache.get_credentials()
        clock.advance(timedelta(minutes=4, seconds=59))
        second = await cache.get_credentials()
        assert fetcher.calls == 1
        assert second == first

    @pytest.mark.asyncio()
    async def test_stale_cache_refetches(self) -> None:
        cache, fetcher, clock = _make_cache()
        await cache.get_credentials()
        clock.advance(timedelta(minutes=5, milliseconds=1))
        creds = await cache.get_credentials()
        assert fetcher.calls == 2
        assert creds.access_token == "sbp_token_2"

    @pytest.mark.asyncio()
    async def test_exactly_ttl_is_stale(self) -> None:
        cache, fetcher, clock = _make_cache()
        await cache.get_credentials()
        clock.advance(timedelta(minutes=5))
        await cache.get_credentials()
        assert fetcher.calls == 2

    @pytest.mark.asyncio()
    async def test_fetched_at_uses_clock(self) -> None:
        cache, _, clock = _make_cache()
        creds = await cache.get_credentials()
        assert creds.fetched_at == clock.now

    @pytest.mark.asyncio()
    async def test_clear_cache_forces_fetch(self) -> None:
        cache, fetcher, _ = _make_cache()
        await cache.get_credentials()
        cache.clear_cache()
        await cache.get_credentials()
        assert fetcher.calls == 2

    def test_clear_cache_is_idempotent(self) -> None:
        cache, _, _ = _make_cache()
        cache.clear_cache()
        cache.clear_cache()
        assert not cache.is_fresh()

    @pytest.mark.asyncio()
    async def test_access_token_and_project_refs(self) -> None:
        cache, fetcher, _ = _make_cache()
        assert await cache.get_access_token() == "sbp_token_1"
        assert await cache.get_project_refs() == ["abc123"]
        assert fetcher.calls == 1

    @pytest.mark.asyncio()
    async def test_failed_refresh_keeps_previous_value(self) -> None:
        cache, fetcher, clock = _make_cache()
        first = await cache.get_credentials()
        clock.advance(timedelta(minutes=6))
        fetcher.error = CredentialFetchError("boom", status_code=500)
        with pytest.raises(CredentialFetchError, match="boom"):
            await cache.get_credentials()
        assert cache._cached == first

        fetcher.error = None
        clock.advance(timedelta(seconds=1))
        second = await cache.get_credentials()
        assert second.access_token != first.access_token
        assert fetcher.calls == 3

    @pytest.mark.asyncio()
    async def test_failed_first_fetch_leaves_cache_empty(self) -> None:
        cache, fetcher, _ = _make_cache()
        fetcher.error = CredentialFetchError("down")
        with pytest.raises(CredentialFetchError):
            await cache.get_access_token()
        assert not cache.is_fresh()

    @pytest.mark.asyncio()
    async def test_fetch_fresh_does_not_touch_cache(self) -> None:
        cache, fetcher, _ = _make_cache()
        cached = await cache.get_credentials()
        fresh = await cache.fetch_fresh()
        assert fresh.access_token == "sbp_token_2"
        assert await cache.get_credentials() == cached
        assert fetcher.calls == 2

    @pytest.mark.asyncio()
    async def test_null_project_refs_become_empty_list(self) -> None:
        async def fetcher() -> CredentialResponse:
            return CredentialResponse.model_validate({"credential": "tok", "metadata": {"project_refs": None}})

        cache = CredentialCache(fetcher=fetcher)
        assert await cache.get_project_refs() == []

    @pytest.mark.asyncio()
    async def test_returned_project_refs_do_not_alias_cache(self) -> None:
        cache, fetcher, _ = _make_cache()
        refs = await cache.get_project_refs()
        refs.append("injected")
        assert await cache.get_project_refs() == ["abc123"]
        assert (await cache.get_credentials()).project_refs == ("abc123",)
        assert fetcher.calls == 1

    @pytest.mark.asyncio()
    async def test_concurrent_misses_each_fetch_and_last_wins(self) -> None:
        second_done = asyncio.Event()
        calls = 0

        async def fetcher() -> CredentialResponse:
            nonlocal calls
            calls += 1
            call = calls
            if call == 1:
                # the first fetch finishes only after the second one has returned
                await second_done.wait()
            else:
                second_done.set()
            return CredentialResponse(credential=f"sbp_token_{call}", metadata=CredentialMetadata())

        cache = CredentialCache(fetcher=fetcher, clock=FakeClock())
        first, second = await asyncio.gather(cache.get_credentials(), cache.get_credentials())

        assert calls == 2
        assert first.access_token == "sbp_token_1"
        assert second.access_token == "sbp_token_2"
        assert await cache.get_access_token() == "sbp_token_1"
        assert calls == 2


class TestMissingEnvironment:
    @pytest.mark.asyncio()
    @pytest.mark.parametrize("missing", ["SUPABASE_ACCOUNT", "MCP_AUTH_TOKEN", "ASSISTANT_MCP_URL"])
    async def test_missing_variable_fails_before_network(self, missing: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SUPABASE_ACCOUNT", "acme")
        monkeypatch.setenv("MCP_AUTH_TOKEN", "tok123")
        monkeypatch.setenv("ASSISTANT_MCP_URL", "https://cred.example")
        monkeypatch.delenv(missing)

        cache = CredentialCache()
        with patch("supabase_mcp.services.credentials.httpx.AsyncClient") as mock_client:
            for op in (cache.get_credentials, cache.get_access_token, cache.get_project_refs):
                with pytest.raises(ConfigurationError, match=missing):
                    await op()
            mock_client.assert_not_called()


_CONFIG = BridgeConfig(account="acme", auth_token="tok123", server_url="https://cred.example")


def _transport(
    status: int = 200, body: bytes | str = b"", seen: list[httpx.Request] | None = None
) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        content = body.encode() if isinstance(body, str) else body
        return httpx.Response(status, content=content)

    return httpx.MockTransport(handler)


class TestFetchCredentials:
    @pytest.mark.asyncio()
    async def test_request_shape_and_parsing(self) -> None:
        seen: list[httpx.Request] = []
        body = json.dumps({"credential": "sbp_xyz", "metadata": {"project_refs": ["abc123"]}})
        payload = await fetch_credentials(_CONFIG, transport=_transport(body=body, seen=seen))

        assert len(seen) == 1
        request = seen[0]
        assert request.method == "GET"
        assert str(request.url) == "https://cred.example/api/credential/supabase_acme"
        assert request.headers["Authorization"] == "Bearer tok123"
        assert request.headers["Content-Type"] == "application/json"
        assert payload.credential == "sbp_xyz"
        assert payload.metadata.project_refs == ["abc123"]
        assert payload.metadata.default_project is None

    @pytest.mark.asyncio()
    async def test_trailing_slash_in_server_url(self) -> None:
        seen: list[httpx.Request] = []
        config = BridgeConfig(account="acme", auth_token="t", server_url="https://cred.example/")
        await fetch_credentials(config, transport=_transport(body='{"credential": "x", "metadata": {}}', seen=seen))
        assert str(seen[0].url) == "https://cred.example/api/credential/supabase_acme"

    @pytest.mark.asyncio()
    async def test_extra_metadata_ignored(self) -> None:
        body = json.dumps(
            {
                "service": "supabase_acme",
                "credential": "sbp_xyz",
                "metadata": {"default_project": "p1", "region": "us-east-1"},
                "updated_at": "2026-01-01T00:00:00Z",
            }
        )
        payload = await fetch_credentials(_CONFIG, transport=_transport(body=body))
        assert payload.metadata.default_project == "p1"

    @pytest.mark.asyncio()
    async def test_non_2xx_carries_status_and_body(self) -> None:
        with pytest.raises(CredentialFetchError, match="404") as exc_info:
            await fetch_credentials(_CONFIG, transport=_transport(status=404, body="credential not found"))
        assert exc_info.value.status_code == 404
        assert exc_info.value.body == "credential not found"
        assert "credential not found" in str(exc_info.value)

    @pytest.mark.asyncio()
    async def test_malformed_json(self) -> None:
        with pytest.raises(CredentialParseError, match="malformed JSON"):
            await fetch_credentials(_CONFIG, transport=_transport(body="<html>oops</html>"))

    @pytest.mark.asyncio()
    async def test_missing_credential_field(self) -> None:
        with pytest.raises(CredentialParseError):
            await fetch_credentials(_CONFIG, transport=_transport(body='{"metadata": {}}'))

    @pytest.mark.asyncio()
    async def test_empty_credential_rejected(self) -> None:
        with pytest.raises(CredentialParseError):
            await fetch_credentials(_CONFIG, transport=_transport(body='{"credential": "", "metadata": {}}'))

    @pytest.mark.asyncio()
    async def test_transport_error_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(CredentialFetchError, match="connection refused") as exc_info:
            await fetch_credentials(_CONFIG, transport=httpx.MockTransport(handler))
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio()
    async def test_cache_over_http_fetcher(self) -> None:
        seen: list[httpx.Request] = []
        body = json.dumps({"credential": "sbp_xyz", "metadata": {"project_refs": ["abc123"]}})
        transport = _transport(body=body, seen=seen)
        cache = CredentialCache(fetcher=lambda: fetch_credentials(_CONFIG, transport=transport))

        assert await cache.get_access_token() == "sbp_xyz"
        assert await cache.get_project_refs() == ["abc123"]
        assert len(seen) == 1
