import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from support_handoff.core.config import Settings
from support_handoff.core.security import hash_password, hash_widget_key
from support_handoff.domain.enums import OperatorPresence
from support_handoff.infra.db.models import Operator, WidgetApiKey

logger = logging.getLogger(__name__)

DEFAULT_OPERATOR_ACCOUNTS: list[dict[str, str | int]] = [
    {"display_name": "Maya Chen", "username": "maya.chen", "max_chats": 5},
    {"display_name": "Alex Rivera", "username": "alex.rivera", "max_chats": 3},
]


async def seed_default_operators(session: AsyncSession, settings: Settings) -> int:
    existing_rows = await session.execute(select(Operator.username))
    existing_usernames = {username.lower() for username in existing_rows.scalars().all()}

    created = 0
    for item in DEFAULT_OPERATOR_ACCOUNTS:
        username = str(item["username"]).lower()
        if username in existing_usernames:
            continue

        session.add(
            Operator(
                tenant_id=settings.seed_tenant_id,
                display_name=str(item["display_name"]),
                username=username,
                password_hash=hash_password(settings.seed_operator_password),
                is_active=True,
                presence=OperatorPresence.OFFLINE,
                active_chats=0,
                max_chats=int(item["max_chats"]),
            )
        )
        created += 1

    if created:
        await session.flush()
    return created


async def seed_default_widget_key(session: AsyncSession, settings: Settings) -> bool:
    key_hash = hash_widget_key(settings.seed_widget_api_key)
    existing = await session.execute(
        select(WidgetApiKey.id).where(WidgetApiKey.key_hash == key_hash)
    )
    if existing.scalar_one_or_none() is not None:
        return False

    session.add(
        WidgetApiKey(
            tenant_id=settings.seed_tenant_id,
            label="local development",
            key_hash=key_hash,
            allowed_domains=settings.seed_widget_allowed_domains,
            is_active=True,
        )
    )
    await session.flush()
    return True
