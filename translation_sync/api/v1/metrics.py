from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
JOB_CLAIM_TOTAL = Counter(
    "translation_job_claim_total",
    "Claim attempts on due translation jobs",
    ["job_type", "result"],  # result=claimed|lost_race
)

JOB_OUTCOME_TOTAL = Counter(
    "translation_job_outcome_total",
    "Resolved translation jobs",
    ["job_type", "outcome"],  # completed|skipped_manual|skipped_up_to_date|retried|failed
)

DISCOVERY_ENQUEUED_TOTAL = Counter(
    "translation_discovery_enqueued_total",
    "Jobs created or refreshed by discovery",
    ["job_type"],
)

STALE_REQUEUED_TOTAL = Counter(
    "translation_jobs_stale_requeued_total",
    "Jobs recovered from a stuck processing state",
)

PROVIDER_CALL_DURATION = Histogram(
    "translation_provider_call_seconds",
    "Latency of one batch translation request",
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 45.0],
)

PROVIDER_CALL_TOTAL = Counter(
    "translation_provider_call_total",
    "Batch translation requests",
    ["result"],  # ok|error
)

SYNC_RUNS_TOTAL = Counter(
    "translation_sync_runs_total",
    "Sync invocations",
    ["result"],  # ok|skipped|error
)

@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
