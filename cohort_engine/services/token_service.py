"""JWT access token validation (ES256).

The engine does not log anyone in.  Tokens are issued by the platform's
auth service; the engine only verifies them and reads two claims:

  sub    the learner or staff user id (an opaque string to the engine)
  roles  student | instructor | admin

With JWT_PUBLIC_KEY_FILE set, tokens are verified against the issuer's
PEM public key and this process cannot mint any.  Without it (dev, test)
an ephemeral key pair is generated on import and create_access_token()
signs with it, so the API can be exercised without the auth service.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from cohort_engine.core.config import SETTINGS

logger = logging.getLogger(__name__)

ALGORITHM = "ES256"
ACCESS_TOKEN_TTL_MIN = 15

_private_key: ec.EllipticCurvePrivateKey | None
if SETTINGS.jwt_public_key_file:
    _private_key = None
    _public_key = serialization.load_pem_public_key(
        Path(SETTINGS.jwt_public_key_file).read_bytes()
    )
    if not isinstance(_public_key, ec.EllipticCurvePublicKey):
        raise ValueError("JWT_PUBLIC_KEY_FILE must hold an EC (P-256) public key")
    logger.info("Verifying tokens with issuer key %s", SETTINGS.jwt_public_key_file)
else:
    _private_key = ec.generate_private_key(ec.SECP256R1())
    _public_key = _private_key.public_key()


def create_access_token(
    *,
    sub: str,
    roles: list[str] | None = None,
    ttl_minutes: int = ACCESS_TOKEN_TTL_MIN,
) -> str:
    """Sign a token with the local dev key.  Roles default to ["student"]."""
    if _private_key is None:
        raise RuntimeError("Token minting is disabled when JWT_PUBLIC_KEY_FILE is set")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": SETTINGS.jwt_issuer,
        "aud": SETTINGS.jwt_audience,
        "exp": now + timedelta(minutes=ttl_minutes),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "roles": roles or ["student"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    The algorithm is pinned, so alg:none and HS256-with-public-key tokens
    are rejected.  Raises jwt.ExpiredSignatureError or
    jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=SETTINGS.jwt_issuer,
        audience=SETTINGS.jwt_audience,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
