"""Data models flowing through the conversion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union


@dataclass(frozen=True)
class WorkItem:
    """One URL to convert, with its input position and target file name."""

    index: int
    url: str
    label: str
    file_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "url": self.url,
            "label": self.label,
            "fileName": self.file_name,
        }


@dataclass(frozen=True)
class RenderOptions:
    delay_ms: int = 3000
    width: str = "1920px"
    height: str = "1080px"
    extra: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "delay": self.delay_ms,
            "width": self.width,
            "height": self.height,
        }
        payload.update(self.extra)
        return payload


@dataclass(frozen=True)
class ConversionSuccess:
    artifact_ref: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ConversionFailure:
    reason: str

    @property
    def ok(self) -> bool:
        return False


ConversionOutcome = Union[ConversionSuccess, ConversionFailure]


@dataclass(frozen=True)
class ArtifactRecord:
    """A PDF that was both rendered and downloaded to local staging."""

    index: int
    url: str
    file_name: str
    local_path: Path
    label: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "url": self.url,
            "fileName": self.file_name,
            "localPath": str(self.local_path),
            "label": self.label,
        }


@dataclass(frozen=True)
class FailedItem:
    index: int
    url: str
    file_name: str
    error: str
    label: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "url": self.url,
            "fileName": self.file_name,
            "error": self.error,
            "label": self.label,
        }


@dataclass
class BatchResult:
    """Outcome of a scheduler run.

    Both lists are in completion order; sort by ``index`` to recover input order.
    """

    total: int
    success: list[ArtifactRecord] = field(default_factory=list)
    failed: list[FailedItem] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Progress events emitted by the scheduler
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchStarted:
    batch: int
    total_batches: int
    processed: int
    total_urls: int


@dataclass(frozen=True)
class ItemSucceeded:
    index: int
    file_name: str
    url: str


@dataclass(frozen=True)
class ItemFailed:
    index: int
    file_name: str
    url: str
    error: str


ProgressEvent = Union[BatchStarted, ItemSucceeded, ItemFailed]
