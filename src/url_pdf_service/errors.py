"""Exception hierarchy shared by the conversion core, delivery and HTTP layers."""


class ServiceError(Exception):
    """Base class for all service errors."""


class ParseError(ServiceError):
    """Structured URL input could not be decoded."""


class SubmissionRejected(ServiceError):
    """A conversion request was refused before any job was created."""


class FetchError(ServiceError):
    """Downloading a rendered artifact failed."""


class DeliveryError(ServiceError):
    """A delivery strategy could not hand the artifacts to the recipient."""


class DeliverySizeExceeded(DeliveryError):
    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"ZIP file too large ({size_bytes / 1024 / 1024:.2f} MB). "
            f"Maximum is {limit_bytes // (1024 * 1024)}MB. "
            "Consider using Google Drive delivery instead."
        )


class DeliveryTransportError(DeliveryError):
    """The mail channel or the remote storage rejected a call."""


class JobNotFound(ServiceError, KeyError):
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(job_id)

    def __str__(self) -> str:
        return f"job not found: {self.job_id}"


class InvalidJobTransition(ServiceError):
    """A job record was asked to move backwards or change after finishing."""
