import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from translation_sync.settings import settings
from translation_sync.api.v1.sync import router as sync_router
from translation_sync.api.v1.jobs import router as jobs_router
from translation_sync.api.v1.admin import router as admin_router
from translation_sync.api.v1.metrics import router as metrics_router
from translation_sync.domain.errors import AuthorizationError

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title=settings.PROJECT_NAME)

@app.exception_handler(AuthorizationError)
async def unauthenticated_handler(request: Request, exc: AuthorizationError):
    return JSONResponse(status_code=401, content={"error": "Unauthenticated."})

app.include_router(sync_router, prefix="/api/v1/sync", tags=["sync"])
app.include_router(jobs_router, prefix="/api/v1/jobs", tags=["jobs"])
app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
app.include_router(metrics_router, tags=["metrics"])

@app.get("/health")
async def health():
    return {"status": "ok"}
