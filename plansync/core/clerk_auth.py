"""
Clerk JWT verification for plan endpoints.

With CLERK_SECRET_KEY set, tokens are HS256 and checked against the shared
secret. Otherwise tokens are RS256 and checked against the issuer's JWKS,
fetched once per issuer and kept in memory.
"""
import json
import time
from typing import Any, Callable, Dict, Optional

import httpx
import jwt
from jwt.algorithms import RSAAlgorithm

from plansync.core.config import settings

JwksProvider = Callable[[str, str], Dict[str, Any]]

DEFAULT_TEST_ISSUER = "https://test.clerk.accounts.dev"


def _fetch_jwks_over_http(issuer: str, jwks_url: str) -> Dict[str, Any]:
    response = httpx.get(jwks_url, timeout=5.0)
    response.raise_for_status()
    return response.json()


class JwksCache:
    """Key sets by (issuer, url), loaded through a swappable provider."""

    def __init__(self, provider: JwksProvider = _fetch_jwks_over_http):
        self.provider = provider
        self._keys: Dict[tuple, Dict[str, Any]] = {}

    def use_provider(self, provider: Optional[JwksProvider]) -> None:
        self.provider = provider or _fetch_jwks_over_http
        self._keys.clear()

    def key_for(self, issuer: str, jwks_url: Optional[str], kid: str) -> Dict[str, Any]:
        url = jwks_url or issuer.rstrip("/") + "/.well-known/jwks.json"
        if (issuer, url) not in self._keys:
            self._keys[(issuer, url)] = self.provider(issuer, url)
        for key in self._keys[(issuer, url)].get("keys", []):
            if key.get("kid") == kid:
                return key
        raise jwt.PyJWTError(f"signing key {kid!r} is not published by {url}")


jwks_cache = JwksCache()


def set_jwks_provider_for_tests(provider: Optional[JwksProvider]) -> None:
    """Serve JWKS from `provider` instead of HTTP; None restores the default."""
    jwks_cache.use_provider(provider)


def _decode_rs256(token: str) -> Dict[str, Any]:
    issuer = settings.CLERK_ISSUER
    if not (issuer or settings.CLERK_JWKS_URL):
        raise jwt.PyJWTError("RS256 verification needs CLERK_ISSUER or CLERK_JWKS_URL")

    kid = jwt.get_unverified_header(token).get("kid")
    if not kid:
        raise jwt.PyJWTError("token header has no kid")

    jwk = jwks_cache.key_for(issuer or DEFAULT_TEST_ISSUER, settings.CLERK_JWKS_URL, kid)
    return jwt.decode(
        token,
        RSAAlgorithm.from_jwk(json.dumps(jwk)),
        algorithms=["RS256"],
        audience=settings.CLERK_AUDIENCE,
        issuer=issuer,
    )


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """
    Return the verified claims of a Clerk session token.

    Raises:
        jwt.PyJWTError: token is malformed, expired or signed by an unknown key
    """
    if settings.CLERK_SECRET_KEY:
        return jwt.decode(
            token,
            settings.CLERK_SECRET_KEY,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
    return _decode_rs256(token)


def is_admin_user(claims: Dict[str, Any]) -> bool:
    metadata = claims.get("public_metadata")
    if isinstance(metadata, dict) and metadata.get("role") == "admin":
        return True
    return claims.get("org_role") == "admin"


def create_test_jwt(
    sub: str = "test_user_123",
    email: Optional[str] = "test@example.com",
    role: Optional[str] = None,
    exp_minutes: int = 60,
    secret: str = "test-secret-key",
) -> str:
    """HS256 token with Clerk-shaped claims, for tests."""
    issued = int(time.time())
    claims = {
        "sub": sub,
        "email": email,
        "iat": issued,
        "exp": issued + exp_minutes * 60,
        "iss": settings.CLERK_ISSUER or DEFAULT_TEST_ISSUER,
        "public_metadata": {"role": role} if role else {},
    }
    return jwt.encode(claims, secret, algorithm="HS256")
