import logging
from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urlsplit
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from support_handoff.core.security import hash_widget_key
from support_handoff.infra.db.repositories import WidgetApiKeyRepository
from support_handoff.services.errors import WidgetCredentialError, WidgetDomainError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WidgetTenant:
    tenant_id: UUID
    api_key_id: UUID


def extract_host(referrer: str | None) -> str | None:
    """Host part of a referrer given as a full URL or a bare host name."""
    if referrer is None:
        return None
    raw = referrer.strip()
    if not raw:
        return None
    if "://" not in raw:
        raw = f"//{raw}"
    host = urlsplit(raw).hostname
    return host.lower() if host else None


def domain_allowed(host: str | None, patterns: Iterable[str]) -> bool:
    """Match ``host`` against allowed domain patterns.

    ``example.com`` allows the domain itself and any subdomain;
    ``*.example.com`` does the same through an explicit wildcard.
    """
    cleaned = [pattern.strip().lower() for pattern in patterns if pattern and pattern.strip()]
    if not cleaned:
        return True
    if host is None:
        return False

    for pattern in cleaned:
        base = pattern[2:] if pattern.startswith("*.") else pattern
        if host == base or host.endswith(f".{base}"):
            return True
    return False


class WidgetAccessService:
    def __init__(
        self,
        session: AsyncSession,
        api_keys: WidgetApiKeyRepository | None = None,
    ) -> None:
        self.session = session
        self.api_keys = api_keys or WidgetApiKeyRepository(session)

    async def authenticate(self, raw_key: str | None, referrer: str | None) -> WidgetTenant:
        if raw_key is None or not raw_key.strip():
            raise WidgetCredentialError()

        api_key = await self.api_keys.get_active_by_hash(hash_widget_key(raw_key))
        if api_key is None:
            raise WidgetCredentialError()

        host = extract_host(referrer)
        if not domain_allowed(host, api_key.allowed_domains or []):
            logger.info("Rejected widget request from %s for key %s", host, api_key.id)
            raise WidgetDomainError(host)

        return WidgetTenant(tenant_id=api_key.tenant_id, api_key_id=api_key.id)
