import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from translation_sync.api.deps import Config, CronAuth, SessionFactory, TranslatorDep
from translation_sync.services.sync import TranslationSyncService

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[CronAuth])

@router.api_route("/translations", methods=["GET", "POST"])
async def sync_translations(session_factory: SessionFactory, config: Config, translator: TranslatorDep):
    """
    Runs one time-boxed sync pass. Meant to be hit by an external
    scheduler every few minutes; GET and POST behave the same.
    """
    service = TranslationSyncService(session_factory, translator, config)
    result = await service.run()

    status_code = 200 if result.success else 500
    return JSONResponse(status_code=status_code, content=result.to_json())
