from enum import StrEnum, auto

class JobStatus(StrEnum):
    PENDING = auto()     # Waiting for available_at
    PROCESSING = auto()  # Claimed by a sync invocation
    COMPLETED = auto()   # Translated, already current, or manual skip
    FAILED = auto()      # Attempts exhausted

LIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)
REPLACEABLE_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

class JobType(StrEnum):
    EVENT_TITLE = "translate_event_title"
    TAG_NAME = "translate_tag_name"

class RetryDecision(StrEnum):
    RETRY_SCHEDULED = auto()
    FAILED = auto()
