"""Bearer tokens for the knowledge-base API.

The configured KB key is either a complete JWT, used as-is, or a shared
signing secret from which short-lived HS256 service tokens are minted. Some
KB deployments only accept the raw key, so requests can fall back to it.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

import structlog
from jose import jwt

logger = structlog.get_logger(__name__)

SERVICE_SUBJECT = "civilify-service"


class TokenProvider(Protocol):
    """Anything that can hand out the current bearer token."""

    def current_token(self) -> Optional[str]:
        ...


def looks_like_jwt(value: str) -> bool:
    """A compact JWT has exactly three dot-separated, non-empty parts."""
    parts = value.split(".")
    return len(parts) == 3 and all(parts)


class StaticTokenProvider:
    """Returns a pre-issued token unchanged."""

    def __init__(self, token: str):
        self._token = token.strip()

    def current_token(self) -> Optional[str]:
        return self._token or None


class MintedTokenProvider:
    """Mints HS256 service tokens and reuses each one until shortly before expiry."""

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 300,
        refresh_margin_seconds: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        self._secret = secret.strip()
        self.ttl_seconds = ttl_seconds
        self.refresh_margin_seconds = refresh_margin_seconds
        self._clock = clock
        self._token: Optional[str] = None
        self._refresh_at = 0.0

    def current_token(self) -> Optional[str]:
        now = self._clock()
        if self._token is None or now >= self._refresh_at:
            self._token = self._mint(now)
            self._refresh_at = now + self.ttl_seconds - self.refresh_margin_seconds
            logger.debug("Minted KB service token", expires_in=self.ttl_seconds)
        return self._token

    def _mint(self, now: float) -> str:
        issued_at = int(now)
        payload = {
            "sub": SERVICE_SUBJECT,
            "role": "service",
            "iat": issued_at,
            "exp": issued_at + self.ttl_seconds,
        }
        return jwt.encode(payload, self._secret, algorithm="HS256")


def build_token_provider(api_key: Optional[str], ttl_seconds: int = 300) -> Optional[TokenProvider]:
    """Pick the provider for a configured KB key; None when no key is set."""
    key = (api_key or "").strip()
    if not key:
        return None
    if looks_like_jwt(key):
        return StaticTokenProvider(key)
    return MintedTokenProvider(key, ttl_seconds=ttl_seconds)


def auth_header_variants(
    token_provider: Optional[TokenProvider],
    api_key: Optional[str] = None,
) -> List[Tuple[str, Dict[str, str]]]:
    """
    Auth headers to try, in order, against a KB deployment.

    Variants are the provider's token as a bearer token ("minted"), the raw
    key as a bearer token ("raw"), then the raw key as ``x-api-key``. A raw
    variant identical to the minted one (a pre-issued JWT key) is dropped.

    Returns:
        (variant name, headers) pairs; empty when no credentials are configured
    """
    variants: List[Tuple[str, Dict[str, str]]] = []
    if token_provider is not None:
        try:
            token = token_provider.current_token()
        except Exception as e:
            # A weak or malformed signing secret must not block the request
            logger.warning("Failed to build KB auth token", error=str(e))
            token = None
        if token:
            variants.append(("minted", {"Authorization": f"Bearer {token}"}))

    key = (api_key or "").strip()
    if key:
        raw = {"Authorization": f"Bearer {key}"}
        if all(headers != raw for _, headers in variants):
            variants.append(("raw", raw))
        variants.append(("x-api-key", {"x-api-key": key}))
    return variants
