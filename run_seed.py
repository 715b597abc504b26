import asyncio
import logging

from support_handoff.core.app_logging import init_logging
from support_handoff.core.config import get_settings
from support_handoff.core.db import close_engine, get_session_factory, init_engine
from support_handoff.infra.db.seed import seed_default_operators, seed_default_widget_key

logger = logging.getLogger("support_handoff.seed")


async def main() -> None:
    settings = get_settings()
    init_logging(settings)
    engine = init_engine()
    try:
        session_factory = get_session_factory()
        async with session_factory() as session:
            operators = await seed_default_operators(session, settings)
            key_created = await seed_default_widget_key(session, settings)
            await session.commit()
        logger.info("Seeded %d operators, widget key created: %s", operators, key_created)
    finally:
        await close_engine(engine)


if __name__ == "__main__":
    asyncio.run(main())
