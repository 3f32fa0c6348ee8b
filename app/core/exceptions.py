"""Core custom exceptions for the application."""


class PipelineError(Exception):
    """Base exception for pipeline-related errors."""


class ConfigurationError(PipelineError):
    """Exception for configuration-related errors (e.g., missing templates, invalid settings)."""


class PreconditionError(PipelineError):
    """A generation request was rejected before any job was created."""


class AlreadyRunningError(PreconditionError):
    """A live job already exists for the engagement."""


class NotEligibleError(PreconditionError):
    """The engagement is in the wrong status or lacks required inputs."""


class HardStageError(PipelineError):
    """Unrecoverable stage failure; aborts the run and surfaces as the terminal error."""


class SoftStageError(PipelineError):
    """Recoverable per-section failure; recorded as a flag and the run continues."""

    def __init__(self, section: str, message: str):
        super().__init__(message)
        self.section = section


class NotificationError(Exception):
    """Raised when an email notification cannot be delivered."""
