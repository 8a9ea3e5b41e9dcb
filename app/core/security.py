from datetime import datetime, timedelta, timezone

from jose import jwt

from app.core.config import settings

# Tokens are issued by the identity provider; this service only verifies them.
# create_access_token exists for local tooling and tests.
ALGO = "HS256"
ROLES = ("customer", "partner", "admin")


def create_access_token(subject: str, role: str, name: str = "", expires_minutes: int | None = None) -> str:
    if role not in ROLES:
        raise ValueError(f"unknown role: {role}")
    if expires_minutes is None:
        expires_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES
    exp = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": subject, "role": role, "name": name, "type": "access", "exp": exp}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGO)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGO])
