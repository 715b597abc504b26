from dataclasses import dataclass, field
from uuid import UUID, uuid4

import pytest

from support_handoff.core.security import hash_widget_key
from support_handoff.services.errors import WidgetCredentialError, WidgetDomainError
from support_handoff.services.widget_access_service import (
    WidgetAccessService,
    domain_allowed,
    extract_host,
)


@dataclass(slots=True)
class FakeWidgetApiKey:
    id: UUID
    tenant_id: UUID
    key_hash: str
    allowed_domains: list[str] = field(default_factory=list)
    is_active: bool = True


class FakeWidgetApiKeyRepository:
    def __init__(self, keys: list[FakeWidgetApiKey]) -> None:
        self.keys = keys

    async def get_active_by_hash(self, key_hash: str) -> FakeWidgetApiKey | None:
        for key in self.keys:
            if key.key_hash == key_hash and key.is_active:
                return key
        return None


@pytest.mark.parametrize(
    ("referrer", "expected"),
    [
        ("https://shop.example.com/cart?x=1", "shop.example.com"),
        ("shop.example.com", "shop.example.com"),
        ("http://LOCALHOST:5173/", "localhost"),
        ("", None),
        (None, None),
    ],
)
def test_extract_host(referrer: str | None, expected: str | None) -> None:
    assert extract_host(referrer) == expected


def test_domain_allowed_matches_exact_and_subdomains() -> None:
    patterns = ["example.com", "*.partner.io"]

    assert domain_allowed("example.com", patterns)
    assert domain_allowed("shop.example.com", patterns)
    assert domain_allowed("eu.partner.io", patterns)
    assert not domain_allowed("badexample.com", patterns)
    assert not domain_allowed("example.org", patterns)
    assert not domain_allowed(None, patterns)


def test_empty_allow_list_permits_any_domain() -> None:
    assert domain_allowed("anything.test", [])
    assert domain_allowed(None, [" "])


@pytest.fixture
def access_service() -> tuple[WidgetAccessService, FakeWidgetApiKey]:
    key = FakeWidgetApiKey(
        id=uuid4(),
        tenant_id=uuid4(),
        key_hash=hash_widget_key("shop-widget-key"),
        allowed_domains=["shop.example.com"],
    )
    service = WidgetAccessService(session=None, api_keys=FakeWidgetApiKeyRepository([key]))
    return service, key


@pytest.mark.asyncio
async def test_authenticate_resolves_tenant(access_service) -> None:
    service, key = access_service

    tenant = await service.authenticate("shop-widget-key", "https://shop.example.com/help")

    assert tenant.tenant_id == key.tenant_id
    assert tenant.api_key_id == key.id


@pytest.mark.asyncio
async def test_authenticate_rejects_unknown_or_missing_key(access_service) -> None:
    service, _ = access_service

    with pytest.raises(WidgetCredentialError):
        await service.authenticate("wrong-key", "https://shop.example.com")
    with pytest.raises(WidgetCredentialError):
        await service.authenticate(None, "https://shop.example.com")


@pytest.mark.asyncio
async def test_authenticate_rejects_foreign_domain(access_service) -> None:
    service, _ = access_service

    with pytest.raises(WidgetDomainError):
        await service.authenticate("shop-widget-key", "https://evil.test")


@pytest.mark.asyncio
async def test_inactive_key_is_rejected(access_service) -> None:
    service, key = access_service
    key.is_active = False

    with pytest.raises(WidgetCredentialError):
        await service.authenticate("shop-widget-key", "https://shop.example.com")
