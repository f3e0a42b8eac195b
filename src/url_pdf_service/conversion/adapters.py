import logging
import os
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter

from ..errors import FetchError
from .interfaces import ConverterGateway, FetcherGateway
from .models import ConversionFailure, ConversionOutcome, ConversionSuccess, RenderOptions

log = logging.getLogger(__name__)

REDIRECT_CODES = {301, 302}
DEFAULT_POOL_SIZE = 20


def pooled_session(pool_size: int = DEFAULT_POOL_SIZE) -> requests.Session:
    """A session whose connection pool fits ``pool_size`` concurrent callers."""
    session = requests.Session()
    adapter = HTTPAdapter(pool_maxsize=pool_size)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class _Deadline:
    """Cuts off a streamed response body once a wall-clock deadline passes.

    requests timeouts bound each socket read, not the whole transfer.
    """

    def __init__(self, resp: requests.Response, deadline: float) -> None:
        self._resp = resp
        self.expired = threading.Event()
        self._timer = threading.Timer(max(0.0, deadline - time.monotonic()), self._expire)
        self._timer.daemon = True

    def _expire(self) -> None:
        self.expired.set()
        if self._resp.raw is not None:
            try:
                self._resp.raw.shutdown()
            except (OSError, ValueError, RuntimeError) as e:
                log.debug("socket shutdown at deadline failed: %s", e)
        self._resp.close()

    def __enter__(self) -> "_Deadline":
        self._timer.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self._timer.cancel()


class Api2PdfClient(ConverterGateway):
    """Headless-Chrome URL rendering through the api2pdf REST API.

    ``timeout`` bounds the whole call, response body included.
    """

    def __init__(
        self,
        api_key: str,
        *,
        endpoint: str = "https://v2.api2pdf.com",
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
        max_workers: int = DEFAULT_POOL_SIZE,
    ) -> None:
        self._api_key = api_key
        self._url = endpoint.rstrip("/") + "/chrome/pdf/url"
        self._timeout = timeout
        self._session = session or pooled_session(max_workers)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="api2pdf")

    def convert(
        self, url: str, file_name: str, options: Optional[RenderOptions] = None
    ) -> ConversionOutcome:
        opts = options or RenderOptions()
        payload = {
            "url": url,
            "inline": False,
            "fileName": file_name,
            "options": opts.to_payload(),
        }
        deadline = time.monotonic() + self._timeout
        future = self._executor.submit(self._post, payload, deadline)
        try:
            resp = future.result(timeout=self._timeout)
        except FutureTimeout:
            future.cancel()
            log.warning("render of %s exceeded %ss", url, self._timeout)
            return ConversionFailure("Request timeout")
        except requests.Timeout:
            return ConversionFailure("Request timeout")
        except requests.RequestException as e:
            return ConversionFailure(str(e) or e.__class__.__name__)

        try:
            body = resp.json()
        except ValueError as e:
            if not 200 <= resp.status_code < 300:
                return ConversionFailure(f"HTTP {resp.status_code}")
            return ConversionFailure(f"JSON parse error: {e}")

        error = _error_text(body)
        if not 200 <= resp.status_code < 300:
            reason = f"HTTP {resp.status_code}"
            return ConversionFailure(f"{reason}: {error}" if error else reason)
        if isinstance(body, dict) and body.get("FileUrl"):
            return ConversionSuccess(str(body["FileUrl"]))
        return ConversionFailure(error or "Unknown API error")

    def _post(self, payload: dict[str, Any], deadline: float) -> requests.Response:
        headers = {"Authorization": self._api_key, "Content-Type": "application/json"}
        resp = self._session.post(
            self._url, json=payload, headers=headers, timeout=self._timeout, stream=True
        )
        with _Deadline(resp, deadline) as guard:
            try:
                resp.content  # load the body before the deadline
            except Exception as e:
                if guard.expired.is_set():
                    raise requests.Timeout("render deadline reached") from e
                raise
        if guard.expired.is_set():
            raise requests.Timeout("render deadline reached")
        return resp


def _error_text(body: Any) -> str:
    if not isinstance(body, dict):
        return ""
    for key in ("Error", "error"):
        value = body.get(key)
        if value:
            return str(value)
    return ""


class HttpArtifactFetcher(FetcherGateway):
    """Streams rendered PDFs to disk, following at most one redirect hop.

    ``timeout`` is a total deadline for the transfer, redirect included.
    """

    def __init__(
        self,
        *,
        timeout: float = 120.0,
        chunk_size: int = 64 * 1024,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._timeout = timeout
        self._chunk_size = chunk_size
        self._session = session or pooled_session()

    def fetch(self, artifact_ref: str, local_path: Path) -> Path:
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        # items may share a file name; only a complete download replaces the target
        part_path = local_path.with_name(f".{local_path.name}.{uuid.uuid4().hex}.part")
        deadline = time.monotonic() + self._timeout
        try:
            self._download(artifact_ref, part_path, deadline)
            os.replace(part_path, local_path)
        except FetchError:
            part_path.unlink(missing_ok=True)
            raise
        except requests.Timeout as e:
            part_path.unlink(missing_ok=True)
            raise FetchError("Download timeout") from e
        except (requests.RequestException, OSError) as e:
            part_path.unlink(missing_ok=True)
            raise FetchError(str(e) or e.__class__.__name__) from e
        return local_path

    def _download(self, url: str, part_path: Path, deadline: float) -> None:
        resp = self._get(url, deadline)
        try:
            if resp.status_code in REDIRECT_CODES:
                location = resp.headers.get("Location")
                if not location:
                    raise FetchError(f"HTTP {resp.status_code} without Location header")
                target = urljoin(url, location)
                resp.close()
                log.debug("fetch: following redirect %s -> %s", url, target)
                resp = self._get(target, deadline)
                if resp.status_code in REDIRECT_CODES:
                    raise FetchError("Too many redirects")
            if not 200 <= resp.status_code < 300:
                raise FetchError(f"HTTP {resp.status_code}")

            with _Deadline(resp, deadline) as guard:
                try:
                    with part_path.open("wb") as f_out:
                        for chunk in resp.iter_content(chunk_size=self._chunk_size):
                            if chunk:
                                f_out.write(chunk)
                except Exception as e:
                    if guard.expired.is_set():
                        raise FetchError("Download timeout") from e
                    raise
                if guard.expired.is_set():
                    raise FetchError("Download timeout")
        finally:
            resp.close()

    def _get(self, url: str, deadline: float) -> requests.Response:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise FetchError("Download timeout")
        return self._session.get(url, stream=True, allow_redirects=False, timeout=remaining)
