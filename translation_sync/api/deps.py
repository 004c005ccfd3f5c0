from typing import Annotated, AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from translation_sync.auth.security import require_cron_secret
from translation_sync.db.session import get_db_session, get_session_factory
from translation_sync.services.openrouter import OpenRouterClient
from translation_sync.services.sync import SyncConfig
from translation_sync.services.translator import Translator
from translation_sync.settings import settings

# Dependency for DB session
DbSession = Annotated[AsyncSession, Depends(get_db_session)]

# The sync loop commits step by step, so it takes the factory
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]

def get_sync_config() -> SyncConfig:
    return SyncConfig.from_settings(settings)

async def get_translator() -> AsyncIterator[Translator]:
    client = OpenRouterClient(
        api_url=settings.OPENROUTER_API_URL,
        timeout=settings.OPENROUTER_TIMEOUT_SECONDS,
        site_url=settings.SITE_URL,
        site_name=settings.SITE_NAME,
    )
    try:
        yield client
    finally:
        await client.close()

Config = Annotated[SyncConfig, Depends(get_sync_config)]
TranslatorDep = Annotated[Translator, Depends(get_translator)]
CronAuth = Depends(require_cron_secret)
