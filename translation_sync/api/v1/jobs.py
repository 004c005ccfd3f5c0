from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select

from translation_sync.api.deps import CronAuth, DbSession
from translation_sync.db.models import TranslationJob
from translation_sync.domain.states import JobStatus, JobType

router = APIRouter(dependencies=[CronAuth])

MAX_LIST_LIMIT = 200

class JobResponse(BaseModel):
    id: UUID
    job_type: JobType
    dedupe_key: str
    status: JobStatus
    payload: dict[str, Any]
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    available_at: Optional[datetime] = None
    reserved_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)

@router.get("", response_model=list[JobResponse])
async def list_jobs(
    session: DbSession,
    status: Optional[JobStatus] = None,
    job_type: Optional[JobType] = None,
    limit: int = Query(50, ge=1, le=MAX_LIST_LIMIT),
):
    stmt = select(TranslationJob).order_by(TranslationJob.updated_at.desc()).limit(limit)
    if status is not None:
        stmt = stmt.where(TranslationJob.status == status)
    if job_type is not None:
        stmt = stmt.where(TranslationJob.job_type == job_type)

    return (await session.execute(stmt)).scalars().all()

@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: UUID, session: DbSession):
    job = await session.get(TranslationJob, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
