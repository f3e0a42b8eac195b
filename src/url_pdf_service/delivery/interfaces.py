from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol

from ..conversion.models import BatchResult
from ..conversion.registry import Job


class DeliveryMethod(str, Enum):
    EMAIL = "email"
    DRIVE = "drive"

    @classmethod
    def parse(cls, value: str) -> "DeliveryMethod":
        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"unknown delivery method: {value!r}")


@dataclass
class DeliveryResult:
    """Uniform delivery outcome recorded on the job."""

    success: bool
    method: str
    error: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "method": self.method}
        data.update(self.details)
        if self.error is not None:
            data["error"] = self.error
        return data


class DeliveryStrategy(Protocol):
    method: DeliveryMethod

    async def deliver(self, result: BatchResult, job: Job) -> DeliveryResult:
        """Hand the successful artifacts in result to job.recipient_email.

        Never raises for delivery failures; they come back as success=False.
        """


class MailGateway(Protocol):
    def send(
        self,
        recipient: str,
        subject: str,
        html_body: str,
        attachment_path: Path,
        attachment_name: str,
    ) -> str:
        """Send one message with a single attachment and return its message id.

        Raises DeliveryTransportError when the mail channel rejects the message.
        """


@dataclass(frozen=True)
class RemoteFile:
    id: str
    name: str
    web_view_link: Optional[str] = None


class DriveGateway(Protocol):
    def create_folder(self, name: str, parent_id: Optional[str] = None) -> RemoteFile:
        ...

    def upload_file(
        self, path: Path, name: str, folder_id: str, mime_type: str = "application/pdf"
    ) -> RemoteFile:
        ...

    def upload_text(self, content: str, name: str, folder_id: str) -> RemoteFile:
        ...

    def share_with(self, file_id: str, email: str, role: str = "reader") -> str:
        """Grant email access to file_id and return its shareable link."""
