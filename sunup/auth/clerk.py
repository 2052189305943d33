"""Clerk JWT verification at the HTTP edge.

Turns a Bearer token into the opaque CallerIdentity the guard consumes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import jwt
import structlog

from sunup.auth.context import CallerIdentity
from sunup.config.settings import get_settings
from sunup.exceptions import Unauthenticated

logger = structlog.get_logger(__name__)

_JWKS_CACHE_TTL = 3600


@dataclass
class _JWKSCache:
    keys: list[dict[str, Any]] = field(default_factory=list)
    fetched_at: float = 0.0

    @property
    def is_stale(self) -> bool:
        return time.monotonic() - self.fetched_at > _JWKS_CACHE_TTL


_cache = _JWKSCache()


async def _fetch_jwks(jwks_url: str) -> list[dict[str, Any]]:
    global _cache  # noqa: PLW0603
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.get(jwks_url)
            resp.raise_for_status()
            keys: list[dict[str, Any]] = resp.json().get("keys", [])
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("jwks_fetch_failed", error=str(exc))
        if _cache.keys:
            logger.info("jwks_using_stale_cache")
            return _cache.keys
        raise
    _cache = _JWKSCache(keys=keys, fetched_at=time.monotonic())
    logger.debug("jwks_fetched", key_count=len(keys))
    return keys


async def _get_signing_keys() -> list[dict[str, Any]]:
    jwks_url = get_settings().clerk_jwks_url
    if not jwks_url:
        msg = "CLERK_JWKS_URL is not configured"
        raise ValueError(msg)
    if not _cache.is_stale and _cache.keys:
        return _cache.keys
    return await _fetch_jwks(jwks_url)


def decode_clerk_token(token: str, keys: list[dict[str, Any]], issuer: str | None = None) -> str:
    """Validate ``token`` against the JWKS ``keys`` and return its subject.

    Raises jwt.PyJWTError on invalid/expired tokens.
    """
    options: dict[str, Any] = {"algorithms": ["RS256"], "options": {"verify_aud": False}}
    if issuer:
        options["issuer"] = issuer

    last_error: Exception | None = None
    for jwk in jwt.PyJWKSet.from_dict({"keys": keys}).keys:
        try:
            payload: dict[str, Any] = jwt.decode(token, jwk.key, **options)
        except jwt.PyJWTError as exc:
            last_error = exc
            continue
        subject = payload.get("sub")
        if not subject:
            msg = "Token has no subject"
            raise jwt.InvalidTokenError(msg)
        return str(subject)

    if last_error:
        raise last_error
    msg = "No valid signing key found"
    raise jwt.InvalidTokenError(msg)


async def identity_from_bearer(token: str) -> CallerIdentity:
    """Verify a Clerk session token; invalid tokens are Unauthenticated."""
    keys = await _get_signing_keys()
    try:
        subject = decode_clerk_token(token, keys, issuer=get_settings().clerk_issuer)
    except jwt.PyJWTError as exc:
        logger.warning("clerk_token_invalid", error=str(exc))
        raise Unauthenticated() from exc
    return CallerIdentity(subject=subject)
