from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

PBKDF2_ALGORITHM = "pbkdf2_sha256"
PBKDF2_ITERATIONS = 260_000
PASSWORD_SALT_SIZE = 16
TOKEN_VERSION = 1


@dataclass(frozen=True, slots=True)
class OperatorSessionClaims:
    operator_id: UUID
    tenant_id: UUID
    expires_at: datetime


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(raw: str) -> bytes:
    return base64.urlsafe_b64decode((raw + "=" * (-len(raw) % 4)).encode("ascii"))


def _derive(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def _sign(segment: str, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), segment.encode("utf-8"), hashlib.sha256).digest()


def hash_password(password: str) -> str:
    """Encode as ``pbkdf2_sha256$<iterations>$<salt>$<digest>``."""
    if not password:
        raise ValueError("Password cannot be empty.")

    salt = secrets.token_bytes(PASSWORD_SALT_SIZE)
    digest = _derive(password, salt, PBKDF2_ITERATIONS)
    return "$".join(
        (PBKDF2_ALGORITHM, str(PBKDF2_ITERATIONS), _b64url_encode(salt), _b64url_encode(digest))
    )


def _parse_password_hash(stored_hash: str) -> tuple[int, bytes, bytes] | None:
    parts = stored_hash.split("$")
    if len(parts) != 4 or parts[0] != PBKDF2_ALGORITHM:
        return None
    try:
        return int(parts[1]), _b64url_decode(parts[2]), _b64url_decode(parts[3])
    except (ValueError, TypeError):
        return None


def verify_password(password: str, stored_hash: str) -> bool:
    parsed = _parse_password_hash(stored_hash)
    if parsed is None:
        return False
    iterations, salt, expected = parsed
    return hmac.compare_digest(_derive(password, salt, iterations), expected)


def hash_widget_key(raw_key: str) -> str:
    """Widget keys are stored as SHA-256 hex digests, never in clear text."""
    return hashlib.sha256(raw_key.strip().encode("utf-8")).hexdigest()


def create_operator_access_token(
    *,
    operator_id: UUID,
    tenant_id: UUID,
    secret: str,
    ttl_minutes: int,
) -> tuple[str, datetime]:
    issued_at = datetime.now(UTC)
    expires_at = issued_at + timedelta(minutes=ttl_minutes)
    body = json.dumps(
        {
            "v": TOKEN_VERSION,
            "oid": str(operator_id),
            "tid": str(tenant_id),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        },
        separators=(",", ":"),
        sort_keys=True,
    )
    segment = _b64url_encode(body.encode("utf-8"))
    return f"{segment}.{_b64url_encode(_sign(segment, secret))}", expires_at


def _read_payload(token: str, secret: str) -> dict[str, Any]:
    segment, dot, signature = token.partition(".")
    if not dot:
        raise ValueError("Malformed token")

    try:
        provided = _b64url_decode(signature)
    except (ValueError, TypeError) as exc:
        raise ValueError("Malformed token signature") from exc
    if not hmac.compare_digest(_sign(segment, secret), provided):
        raise ValueError("Invalid token signature")

    try:
        payload = json.loads(_b64url_decode(segment))
    except (ValueError, TypeError) as exc:
        raise ValueError("Malformed token payload") from exc
    if not isinstance(payload, dict):
        raise ValueError("Malformed token payload")
    return payload


def decode_operator_access_token(token: str, secret: str) -> OperatorSessionClaims:
    """Verify signature, version and expiry. Raises ``ValueError`` on any failure."""
    payload = _read_payload(token, secret)
    if payload.get("v") != TOKEN_VERSION:
        raise ValueError("Unsupported token version")

    try:
        claims = OperatorSessionClaims(
            operator_id=UUID(str(payload["oid"])),
            tenant_id=UUID(str(payload["tid"])),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), UTC),
        )
    except (KeyError, ValueError, TypeError) as exc:
        raise ValueError("Malformed token payload") from exc

    if claims.expires_at <= datetime.now(UTC):
        raise ValueError("Token expired")
    return claims
