"""
Job-specific error types.

All errors inherit from GenflowError for easy catching.
Messages are written to be stored verbatim on job rows, so they must make
sense to the owning user.
"""


class GenflowError(Exception):
    """Base exception for all generation job failures."""
    pass


class JobNotFoundError(GenflowError):
    """Raised when a job row cannot be found (or is not owned by the caller)."""

    def __init__(self, entity_type: str, job_id):
        self.entity_type = entity_type
        self.job_id = job_id
        super().__init__(f"{entity_type} not found: {job_id}")


class InvalidStateTransitionError(GenflowError):
    """Raised when attempting an illegal state transition."""

    def __init__(self, entity_type: str, current_state: str, target_state: str):
        self.entity_type = entity_type
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid {entity_type} state transition: "
            f"{current_state} -> {target_state}"
        )


class AuthError(GenflowError):
    """Owner credentials are missing or cannot be decrypted. Never retried."""
    pass


class InvalidParamsError(GenflowError):
    """The generation request itself is malformed."""
    pass


class StorageError(GenflowError):
    """Uploading generated media to blob storage failed."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Failed to upload media to storage ({key}): {reason}")


class PersistenceError(GenflowError):
    """Writing job state to the record store failed."""
    pass
