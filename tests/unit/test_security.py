from uuid import uuid4

import pytest

from support_handoff.core.security import (
    create_operator_access_token,
    decode_operator_access_token,
    hash_password,
    hash_widget_key,
    verify_password,
)

SECRET = "unit-test-operator-secret-with-enough-length"


def test_password_hash_round_trip() -> None:
    stored = hash_password("operator-password")

    assert stored.startswith("pbkdf2_sha256$")
    assert verify_password("operator-password", stored)
    assert not verify_password("wrong-password", stored)


def test_verify_password_rejects_malformed_hash() -> None:
    assert not verify_password("anything", "not-a-hash")
    assert not verify_password("anything", "md5$1$abc$def")


def test_empty_password_cannot_be_hashed() -> None:
    with pytest.raises(ValueError):
        hash_password("")


def test_widget_key_hash_is_stable_and_ignores_whitespace() -> None:
    assert hash_widget_key("local-dev-widget-key") == hash_widget_key(" local-dev-widget-key ")
    assert len(hash_widget_key("local-dev-widget-key")) == 64


def test_operator_token_carries_operator_and_tenant() -> None:
    operator_id = uuid4()
    tenant_id = uuid4()
    token, expires_at = create_operator_access_token(
        operator_id=operator_id,
        tenant_id=tenant_id,
        secret=SECRET,
        ttl_minutes=30,
    )

    claims = decode_operator_access_token(token, SECRET)

    assert claims.operator_id == operator_id
    assert claims.tenant_id == tenant_id
    assert int(claims.expires_at.timestamp()) == int(expires_at.timestamp())


def test_operator_token_rejects_wrong_secret() -> None:
    token, _ = create_operator_access_token(
        operator_id=uuid4(), tenant_id=uuid4(), secret=SECRET, ttl_minutes=30
    )

    with pytest.raises(ValueError, match="signature"):
        decode_operator_access_token(token, "another-secret")


def test_operator_token_rejects_expired_token() -> None:
    token, _ = create_operator_access_token(
        operator_id=uuid4(), tenant_id=uuid4(), secret=SECRET, ttl_minutes=-1
    )

    with pytest.raises(ValueError, match="expired"):
        decode_operator_access_token(token, SECRET)


def test_operator_token_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        decode_operator_access_token("garbage", SECRET)
