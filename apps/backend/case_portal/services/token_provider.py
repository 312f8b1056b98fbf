"""Access token acquisition and caching for external DMS providers.

One TokenProvider is constructed per process (or per test) and injected into
the document store adapters. Tokens are cached per provider configuration
name; refresh is serialized per provider so concurrent callers share a single
in-flight acquisition.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from uuid import uuid4

import httpx
import jwt

from case_portal.config import settings
from case_portal.logger import get_logger
from case_portal.schemas.dms import (
    ApiKeyAuth,
    DmsProviderConfig,
    OAuth2ClientCredentialsAuth,
    SignedJwtAuth,
)
from case_portal.services.errors import AuthenticationError, TransientNetworkError

logger = get_logger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


@dataclass(frozen=True)
class AccessToken:
    """A bearer credential and the header it travels in."""

    value: str
    expires_at: float | None = None
    header_name: str = "Authorization"
    scheme: str | None = "Bearer"

    def is_usable(self, now: float, margin_seconds: float) -> bool:
        if self.expires_at is None:
            return True
        return self.expires_at - margin_seconds > now

    def as_header(self) -> dict[str, str]:
        if self.scheme:
            return {self.header_name: f"{self.scheme} {self.value}"}
        return {self.header_name: self.value}


class TokenProvider:
    """Per-provider token cache with atomic refresh-or-reuse."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        refresh_margin_seconds: float | None = None,
        clock=time.time,
    ) -> None:
        self._client = client
        self._margin = (
            settings.dms_token_refresh_margin_seconds
            if refresh_margin_seconds is None
            else refresh_margin_seconds
        )
        self._clock = clock
        self._tokens: dict[str, AccessToken] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    def cached(self, name: str) -> AccessToken | None:
        return self._tokens.get(name)

    def invalidate(self, name: str) -> None:
        """Drop the cached token so the next call re-acquires it."""
        if self._tokens.pop(name, None) is not None:
            logger.info("Invalidated cached DMS token", provider=name)

    async def get_token(self, config: DmsProviderConfig) -> AccessToken:
        """Return a usable token, acquiring a new one if missing or near expiry."""
        token = self._tokens.get(config.name)
        if token and token.is_usable(self._clock(), self._margin):
            return token

        async with self._lock_for(config.name):
            # Another caller may have refreshed while we waited for the lock.
            token = self._tokens.get(config.name)
            if token and token.is_usable(self._clock(), self._margin):
                return token
            token = await self._acquire(config)
            self._tokens[config.name] = token
            logger.info(
                "Acquired DMS token",
                provider=config.name,
                auth_type=config.auth.type,
                expires_in=round(token.expires_at - self._clock(), 1) if token.expires_at else None,
            )
            return token

    async def auth_headers(self, config: DmsProviderConfig) -> dict[str, str]:
        token = await self.get_token(config)
        return token.as_header()

    async def _acquire(self, config: DmsProviderConfig) -> AccessToken:
        auth = config.auth
        if isinstance(auth, ApiKeyAuth):
            return AccessToken(
                value=auth.api_key.get_secret_value(),
                header_name=auth.header_name,
                scheme=None,
            )
        if isinstance(auth, OAuth2ClientCredentialsAuth):
            form = {
                "grant_type": "client_credentials",
                "client_id": auth.client_id,
                "client_secret": auth.client_secret.get_secret_value(),
            }
            if auth.scope:
                form["scope"] = auth.scope
            return await self._request_token(config.name, auth.token_url, form)
        if isinstance(auth, SignedJwtAuth):
            assertion, expires_at = self.build_assertion(auth)
            if not auth.token_url:
                return AccessToken(value=assertion, expires_at=expires_at)
            form = {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}
            return await self._request_token(config.name, auth.token_url, form)
        raise AuthenticationError(f"Unsupported auth type for {config.name}")

    def build_assertion(self, auth: SignedJwtAuth) -> tuple[str, float]:
        """Sign a short-lived assertion with the configured private key."""
        now = int(self._clock())
        expires_at = now + auth.assertion_lifetime_seconds
        claims = {
            "iss": auth.issuer,
            "sub": auth.subject or auth.issuer,
            "aud": auth.audience,
            "iat": now,
            "exp": expires_at,
            "jti": uuid4().hex,
        }
        headers = {"kid": auth.key_id} if auth.key_id else None
        try:
            assertion = jwt.encode(
                claims,
                auth.private_key.get_secret_value(),
                algorithm=auth.algorithm,
                headers=headers,
            )
        except (jwt.PyJWTError, ValueError, TypeError) as exc:
            raise AuthenticationError(f"Failed to sign assertion: {exc}") from exc
        return assertion, float(expires_at)

    async def _request_token(self, name: str, token_url: str, form: dict[str, str]) -> AccessToken:
        try:
            response = await self._client.post(token_url, data=form)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"Token endpoint for {name} timed out") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Token endpoint for {name} unreachable: {exc}") from exc

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientNetworkError(
                f"Token endpoint for {name} returned {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            logger.warning(
                "DMS token request refused",
                provider=name,
                status_code=response.status_code,
            )
            raise AuthenticationError(
                f"Token endpoint for {name} refused credentials ({response.status_code})",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
            value = payload["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthenticationError(f"Token endpoint for {name} returned no access_token") from exc

        expires_in = payload.get("expires_in")
        expires_at = self._clock() + float(expires_in) if expires_in else None
        return AccessToken(value=value, expires_at=expires_at)
