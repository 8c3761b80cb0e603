"""JWT validation for tokens minted by the bank's identity service."""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from debtdesk.config import settings

ALGORITHM = "HS256"


def create_access_token(
    employee_code: str,
    role: str,
    dept: str | None = None,
    branch_code: str | None = None,
) -> str:
    """
    Mint an access token in the identity service's format.

    Production tokens come from the identity service; this is used by the
    tests and local tooling.
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": employee_code,
        "role": role,
        "dept": dept,
        "branch_code": branch_code,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode and validate an access token. Raises JWTError on failure."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    if not payload.get("sub"):
        raise JWTError("Token has no subject")
    return payload
