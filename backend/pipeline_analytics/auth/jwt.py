"""Bearer tokens for the analytics API (HS256, issuer-checked)."""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from pipeline_analytics.config import settings

ALGORITHM = "HS256"
ISSUER = "pipeline-analytics"


def create_access_token(user_id: str, role: str, email: str | None = None) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "iss": ISSUER,
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expire_minutes),
        "type": "access",
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Raises JWTError for a bad signature, expiry, issuer or token type."""
    claims = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM], issuer=ISSUER)
    if claims.get("type") != "access":
        raise JWTError("Invalid token type")
    return claims
