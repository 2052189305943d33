"""Unit tests for Clerk token verification."""

from __future__ import annotations

import json
import time

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from sunup.auth import clerk
from sunup.auth.clerk import decode_clerk_token, identity_from_bearer
from sunup.exceptions import Unauthenticated


@pytest.fixture(scope="module")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def jwks(signing_key) -> list[dict]:
    jwk = json.loads(RSAAlgorithm.to_jwk(signing_key.public_key()))
    jwk.update({"kid": "test-key", "alg": "RS256", "use": "sig"})
    return [jwk]


def _token(key, **claims) -> str:
    payload = {"sub": "user_2abc", "iat": int(time.time()), "exp": int(time.time()) + 300}
    payload.update(claims)
    return jwt.encode(payload, key, algorithm="RS256", headers={"kid": "test-key"})


@pytest.mark.unit
class TestDecodeClerkToken:
    def test_returns_subject(self, signing_key, jwks) -> None:
        assert decode_clerk_token(_token(signing_key), jwks) == "user_2abc"

    def test_checks_issuer(self, signing_key, jwks) -> None:
        token = _token(signing_key, iss="https://clerk.sunup.example")
        assert decode_clerk_token(token, jwks, issuer="https://clerk.sunup.example")
        with pytest.raises(jwt.InvalidIssuerError):
            decode_clerk_token(token, jwks, issuer="https://elsewhere.example")

    def test_expired(self, signing_key, jwks) -> None:
        token = _token(signing_key, exp=int(time.time()) - 60)
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_clerk_token(token, jwks)

    def test_wrong_key(self, jwks) -> None:
        other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        with pytest.raises(jwt.PyJWTError):
            decode_clerk_token(_token(other), jwks)

    def test_missing_subject(self, signing_key, jwks) -> None:
        token = jwt.encode(
            {"exp": int(time.time()) + 300}, signing_key, algorithm="RS256"
        )
        with pytest.raises(jwt.InvalidTokenError, match="subject"):
            decode_clerk_token(token, jwks)


@pytest.mark.unit
class TestIdentityFromBearer:
    async def test_valid_token(self, signing_key, jwks, monkeypatch: pytest.MonkeyPatch) -> None:
        async def _keys():
            return jwks

        monkeypatch.setattr(clerk, "_get_signing_keys", _keys)
        identity = await identity_from_bearer(_token(signing_key))
        assert identity.subject == "user_2abc"

    async def test_invalid_token_is_unauthenticated(
        self, jwks, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def _keys():
            return jwks

        monkeypatch.setattr(clerk, "_get_signing_keys", _keys)
        with pytest.raises(Unauthenticated):
            await identity_from_bearer("not-a-jwt")
