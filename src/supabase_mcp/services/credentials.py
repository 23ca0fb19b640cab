"""Credential cache: fetch the Supabase access token from the credential service.

The token lives only in memory and is refreshed after ``DEFAULT_TTL``.

Usage::

    cache = CredentialCache()
    token = await cache.get_access_token()   # fetches on first call
    token = await cache.get_access_token()   # served from cache while fresh
    cache.clear_cache()                      # next call fetches again
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

import httpx
from pydantic import ValidationError

from ..config import BridgeConfig, resolve_config
from ..errors import CredentialFetchError, CredentialParseError
from ..models import CredentialResponse

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=5)
_REQUEST_TIMEOUT = 30.0

CredentialFetcher = Callable[[], Awaitable[CredentialResponse]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Credentials:
    access_token: str
    project_refs: tuple[str, ...] = ()
    default_project: str | None = None
    fetched_at: datetime = field(default_factory=_utcnow)


def service_name(account: str) -> str:
    return f"supabase_{account}"


async def fetch_credentials(
    config: BridgeConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = _REQUEST_TIMEOUT,
) -> CredentialResponse:
    """GET the account's credential from the credential service."""
    service = service_name(config.account)
    url = f"{config.server_url.rstrip('/')}/api/credential/{service}"
    headers = {
        "Authorization": f"Bearer {config.auth_token}",
        "Content-Type": "application/json",
    }

    logger.info(f"Fetching credentials for {service}...")
    try:
        async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as e:
        raise CredentialFetchError(f"Failed to fetch credentials for {service}: {e}") from e

    if not response.is_success:
        body = response.text
        raise CredentialFetchError(
            f"Failed to fetch credentials: {response.status_code} {response.reason_phrase} - {body}",
            status_code=response.status_code,
            body=body,
        )

    try:
        data = json.loads(response.content)
    except ValueError as e:
        raise CredentialParseError(
            f"Credential service returned malformed JSON for {service}: {e}",
            status_code=response.status_code,
            body=response.text,
        ) from e

    try:
        payload = CredentialResponse.model_validate(data)
    except ValidationError as e:
        raise CredentialParseError(
            f"Credential service returned an unexpected body for {service}: {e}",
            status_code=response.status_code,
            body=response.text,
        ) from e

    logger.info(f"Credentials fetched successfully for {service}")
    return payload


async def _fetch_from_environment() -> CredentialResponse:
    return await fetch_credentials(resolve_config())


class CredentialCache:
    """Single-slot, time-bounded cache of the current credentials.

    The slot is deliberately unsynchronized: two concurrent misses both fetch
    and the last one to finish wins. Tokens from the same account are
    interchangeable, so the only cost of the race is a redundant request.
    """

    def __init__(
        self,
        fetcher: CredentialFetcher | None = None,
        clock: Clock | None = None,
        ttl: timedelta = DEFAULT_TTL,
    ) -> None:
        self._fetcher = fetcher or _fetch_from_environment
        self._clock = clock or _utcnow
        self._ttl = ttl
        self._cached: Credentials | None = None

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def is_fresh(self) -> bool:
        if self._cached is None:
            return False
        return self._clock() - self._cached.fetched_at < self._ttl

    async def get_credentials(self) -> Credentials:
        """Return cached credentials while fresh, otherwise fetch and store new ones."""
        if self._cached is not None:
            if self.is_fresh():
                return self._cached
            logger.info("Credentials cache expired, refreshing...")

        credentials = await self.fetch_fresh()
        self._cached = credentials
        return credentials

    async def get_access_token(self) -> str:
        credentials = await self.get_credentials()
        return credentials.access_token

    async def get_project_refs(self) -> list[str]:
        credentials = await self.get_credentials()
        return list(credentials.project_refs)

    async def fetch_fresh(self) -> Credentials:
        """Fetch credentials without consulting or updating the cache."""
        payload = await self._fetcher()
        return Credentials(
            access_token=payload.credential,
            project_refs=tuple(payload.metadata.project_refs or ()),
            default_project=payload.metadata.default_project,
            fetched_at=self._clock(),
        )

    def clear_cache(self) -> None:
        self._cached = None
        logger.info("Credentials cache cleared")
