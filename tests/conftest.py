"""Shared fixtures and fakes for the test suite.

No test touches the network: the rendering service, downloads, SMTP and Google
Drive are replaced by the scripted fakes below.
"""

from __future__ import annotations

import logging
import socketserver
import sys
import threading
import time
from pathlib import Path
from typing import Any, Iterable, Optional

import pytest

from url_pdf_service.conversion.models import (
    BatchResult,
    ConversionFailure,
    ConversionSuccess,
    RenderOptions,
    WorkItem,
)
from url_pdf_service.delivery.interfaces import RemoteFile
from url_pdf_service.errors import DeliveryTransportError, FetchError

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
    force=True,
)


# ---------------------------------------------------------------------------
# Conversion fakes
# ---------------------------------------------------------------------------


class FakeConverter:
    """Succeeds for every URL except those listed in ``failures``."""

    def __init__(self, failures: Optional[dict[str, str]] = None, raises: Iterable[str] = ()) -> None:
        self.failures = failures or {}
        self.raises = set(raises)
        self.calls: list[tuple[str, str, Optional[RenderOptions]]] = []
        self._lock = threading.Lock()

    def convert(self, url: str, file_name: str, options: Optional[RenderOptions] = None):
        with self._lock:
            self.calls.append((url, file_name, options))
        if url in self.raises:
            raise RuntimeError(f"converter exploded on {url}")
        if url in self.failures:
            return ConversionFailure(self.failures[url])
        return ConversionSuccess(f"https://storage.example.com/{file_name}")


class FakeFetcher:
    """Writes a small PDF-ish payload; fails for refs ending in ``fail_suffixes``."""

    def __init__(self, fail_suffixes: Iterable[str] = (), payload: bytes = b"%PDF-1.4 fake") -> None:
        self.fail_suffixes = tuple(fail_suffixes)
        self.payload = payload
        self.calls: list[tuple[str, Path]] = []
        self._lock = threading.Lock()

    def fetch(self, artifact_ref: str, local_path: Path) -> Path:
        with self._lock:
            self.calls.append((artifact_ref, local_path))
        if self.fail_suffixes and artifact_ref.endswith(self.fail_suffixes):
            raise FetchError("HTTP 404")
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(self.payload)
        return local_path


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_items(count: int) -> list[WorkItem]:
    return [
        WorkItem(index=i, url=f"https://site{i}.example.com", label=f"Site {i}", file_name=f"PDF_{i:03d}.pdf")
        for i in range(1, count + 1)
    ]


# ---------------------------------------------------------------------------
# requests fakes
# ---------------------------------------------------------------------------


_NO_JSON = object()


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        json_body: Any = _NO_JSON,
        chunks: Iterable[Any] = (),
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.status_code = status_code
        self._json = json_body
        self._chunks = list(chunks)
        self.headers = headers or {}
        self.raw = None
        self.closed = False

    @property
    def content(self) -> bytes:
        return b"".join(c for c in self._chunks if isinstance(c, bytes))

    def json(self) -> Any:
        if self._json is _NO_JSON:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._json

    def iter_content(self, chunk_size: int = 1):
        for chunk in self._chunks:
            if isinstance(chunk, BaseException):
                raise chunk
            yield chunk

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    def _next(self, **request: Any) -> Any:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def post(self, url: str, **kwargs: Any) -> Any:
        return self._next(method="POST", url=url, **kwargs)

    def get(self, url: str, **kwargs: Any) -> Any:
        return self._next(method="GET", url=url, **kwargs)


# ---------------------------------------------------------------------------
# Local slow HTTP server
# ---------------------------------------------------------------------------


class _DripHandler(socketserver.BaseRequestHandler):
    """Answers any request with a body sent one byte at a time."""

    def handle(self) -> None:
        self.request.recv(65536)
        body, interval = self.server.body, self.server.interval
        head = (
            "HTTP/1.1 200 OK\r\n"
            "Content-Type: application/octet-stream\r\n"
            f"Content-Length: {len(body)}\r\n"
            "Connection: close\r\n\r\n"
        )
        try:
            self.request.sendall(head.encode("ascii"))
            for i in range(len(body)):
                time.sleep(interval)
                self.request.sendall(body[i : i + 1])
        except OSError:
            # client gave up
            return


@pytest.fixture
def drip_server():
    """Start local HTTP servers that trickle their response body."""
    servers: list[socketserver.ThreadingTCPServer] = []

    def start(body: bytes, interval: float) -> str:
        server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), _DripHandler)
        server.daemon_threads = True
        server.block_on_close = False
        server.body, server.interval = body, interval
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        host, port = server.server_address
        return f"http://{host}:{port}"

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


# ---------------------------------------------------------------------------
# Delivery fakes
# ---------------------------------------------------------------------------


class FakeMail:
    def __init__(self, error: Optional[str] = None) -> None:
        self.error = error
        self.sent: list[dict[str, Any]] = []

    def send(self, recipient, subject, html_body, attachment_path, attachment_name) -> str:
        import zipfile

        if self.error:
            raise DeliveryTransportError(self.error)
        with zipfile.ZipFile(attachment_path) as zf:
            names = zf.namelist()
            index = zf.read("INDEX.txt").decode("utf-8")
        self.sent.append(
            {
                "recipient": recipient,
                "subject": subject,
                "html": html_body,
                "path": Path(attachment_path),
                "name": attachment_name,
                "entries": names,
                "index": index,
            }
        )
        return "<msg-1@example.com>"


class FakeDrive:
    def __init__(
        self,
        failing_uploads: Iterable[str] = (),
        folder_error: Optional[str] = None,
        index_error: bool = False,
    ) -> None:
        self.failing_uploads = set(failing_uploads)
        self.folder_error = folder_error
        self.index_error = index_error
        self.folders: list[tuple[str, Optional[str]]] = []
        self.uploads: list[tuple[str, str]] = []
        self.texts: list[tuple[str, str]] = []
        self.shares: list[tuple[str, str, str]] = []

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> RemoteFile:
        if self.folder_error:
            raise DeliveryTransportError(self.folder_error)
        self.folders.append((name, parent_id))
        return RemoteFile(id="folder-1", name=name, web_view_link="https://drive.example.com/folder-1")

    def upload_file(self, path: Path, name: str, folder_id: str, mime_type: str = "application/pdf") -> RemoteFile:
        if name in self.failing_uploads:
            raise DeliveryTransportError(f"upload of {name} rejected")
        self.uploads.append((name, folder_id))
        return RemoteFile(id=f"file-{name}", name=name, web_view_link=f"https://drive.example.com/{name}")

    def upload_text(self, content: str, name: str, folder_id: str) -> RemoteFile:
        if self.index_error:
            raise DeliveryTransportError("index rejected")
        self.texts.append((name, content))
        return RemoteFile(id="index", name=name)

    def share_with(self, file_id: str, email: str, role: str = "reader") -> str:
        self.shares.append((file_id, email, role))
        return f"https://drive.example.com/{file_id}?shared"


def make_batch_result(tmp_path: Path, ok: int, failed: int = 0, payload: bytes = b"%PDF-1.4 data") -> BatchResult:
    from url_pdf_service.conversion.models import ArtifactRecord, FailedItem

    staging = tmp_path / "pdfs"
    staging.mkdir(parents=True, exist_ok=True)
    result = BatchResult(total=ok + failed)
    for i in range(1, ok + 1):
        path = staging / f"PDF_{i:03d}.pdf"
        path.write_bytes(payload)
        result.success.append(
            ArtifactRecord(index=i, url=f"https://ok{i}.example.com", file_name=path.name, local_path=path, label=f"OK {i}")
        )
    for j in range(ok + 1, ok + failed + 1):
        result.failed.append(
            FailedItem(index=j, url=f"https://bad{j}.example.com", file_name=f"PDF_{j:03d}.pdf", error="HTTP 500")
        )
    return result


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
