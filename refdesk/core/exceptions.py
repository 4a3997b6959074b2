"""
Error taxonomy of the job pipeline.

Each exception carries a machine-matchable ``code`` that is stored in
``jobs.error_code`` when the error ends a job.
"""


class JobPipelineError(Exception):
    code = "JobPipelineError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownJobKind(JobPipelineError):
    code = "UnknownJobKind"

    def __init__(self, job_type: str):
        super().__init__(f"Unknown job type: {job_type}")
        self.job_type = job_type


class InvalidJobPayload(JobPipelineError):
    code = "InvalidJobPayload"


class DispatchFailed(JobPipelineError):
    code = "DispatchFailed"


class StorageError(JobPipelineError):
    code = "StorageError"


class MailerError(JobPipelineError):
    code = "MailerError"


class EmptyArtifact(JobPipelineError):
    code = "EmptyArtifact"


class NoRecipients(JobPipelineError):
    code = "NoRecipients"


class LeaseExpired(JobPipelineError):
    code = "LeaseExpired"


WORKER_ERROR_CODE = "WorkerError"
