class TranslationSyncError(Exception):
    """Base exception for translation sync errors."""
    pass

class AuthorizationError(TranslationSyncError):
    pass

class ConfigurationSkip(TranslationSyncError):
    """Raised when a sync run is deliberately a no-op. Not a failure."""
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

class JobNotFoundError(TranslationSyncError):
    def __init__(self, job_id):
        super().__init__(f"Job {job_id} not found")

class JobError(TranslationSyncError):
    """Per-job failure. Always converted into a retry or terminal failure."""
    pass

class PayloadValidationError(JobError):
    def __init__(self, dedupe_key: str, detail: str):
        super().__init__(f"Invalid payload for job {dedupe_key}: {detail}")

class SourceMissingError(JobError):
    pass

class TranslationProviderError(JobError):
    pass

class ResponseParseError(JobError):
    pass

class MissingBatchEntryError(JobError):
    pass

class PersistenceError(JobError):
    pass
