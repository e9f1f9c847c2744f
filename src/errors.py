"""
Error types for the GCE test-host provisioner.

Every error raised on purpose by this project derives from ProvisionerError,
so callers can catch a single type at the edge of a provisioning run.
"""

from typing import Optional


class ProvisionerError(RuntimeError):
    """Base class for all provisioner errors."""


class ConfigError(ProvisionerError):
    """Missing or invalid local configuration (key files, SSH keys, options)."""


class InvalidResourceRef(ProvisionerError, ValueError):
    """A resource reference is missing one of its identity fields."""


class ImageResolutionError(ProvisionerError):
    """Base class for image resolution failures."""


class UnsupportedPlatform(ImageResolutionError):
    """The platform token does not map to a known image owner project."""

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"Unsupported platform for image lookup: {platform}")


class NoMatchingImage(ImageResolutionError):
    """No non-deprecated image matched the platform."""

    def __init__(self, platform: str, raw_count: int):
        self.platform = platform
        self.raw_count = raw_count
        super().__init__(
            f"Unable to find a single matching image for {platform}, "
            f"considered {raw_count} candidate(s)"
        )


class TransportError(ProvisionerError):
    """A call failed at the network layer or with a retryable HTTP status."""

    def __init__(self, cause):
        self.cause = cause
        super().__init__(f"Transport error: {cause}")


class ApiError(ProvisionerError):
    """The API rejected a call with a non-retryable HTTP status."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"API error {status_code}: {message}")


class OperationFailed(ProvisionerError):
    """The remote side reported that the mutation itself failed."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Operation failed: {reason}")


class ExhaustedAttempts(ProvisionerError):
    """
    Polling used its whole attempt budget without reaching a terminal state.

    The mutation was accepted remotely and may still complete after this
    error is reported.
    """

    may_still_complete = True

    def __init__(self, attempts: int, elapsed: float, message: Optional[str] = None):
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            message
            or f"Exhausted attempts: {attempts} probe(s) over {elapsed:.1f}s"
        )


class DeadlineExceeded(ExhaustedAttempts):
    """The overall poll deadline passed before the attempt budget was spent."""

    def __init__(self, attempts: int, elapsed: float, deadline: float):
        self.deadline = deadline
        super().__init__(
            attempts,
            elapsed,
            f"Deadline of {deadline:.1f}s exceeded after {attempts} probe(s) "
            f"({elapsed:.1f}s elapsed)",
        )


class PollCancelled(ProvisionerError):
    """The caller cancelled a poll while it was waiting between probes."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Polling cancelled after {attempts} probe(s)")


class LifecycleError(ProvisionerError):
    """
    A create/delete/update lifecycle call did not reach its terminal state.

    Attributes:
        ref: Resource the call was about
        outcome: PollOutcome of the failed poll
        cause: Typed error carried by the outcome
    """

    action = "lifecycle"

    def __init__(self, ref, outcome):
        self.ref = ref
        self.outcome = outcome
        self.cause = outcome.error
        super().__init__(
            f"{self.action} failed for {ref.kind.value} '{ref.name}' "
            f"(project={ref.project}, zone={ref.zone}): {self.cause}"
        )


class CreateFailed(LifecycleError):
    action = "Create"


class DeleteFailed(LifecycleError):
    action = "Delete"


class MetadataUpdateFailed(LifecycleError):
    action = "Metadata update"
