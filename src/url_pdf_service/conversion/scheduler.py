import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from ..errors import FetchError
from .interfaces import ConverterGateway, FetcherGateway, ProgressSink
from .models import (
    ArtifactRecord,
    BatchResult,
    BatchStarted,
    FailedItem,
    ItemFailed,
    ItemSucceeded,
    ProgressEvent,
    RenderOptions,
    WorkItem,
)

log = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY_SEC = 2.0


class BatchScheduler:
    """Drives work items through conversion and download in paced batches.

    Batches run one after another; items inside a batch run concurrently and
    are all joined before the next batch starts. A pause separates batches to
    throttle the request rate against the rendering service. Individual item
    failures are recorded in the result and never stop the run.
    """

    def __init__(
        self,
        converter: ConverterGateway,
        fetcher: FetcherGateway,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_sec: float = DEFAULT_BATCH_DELAY_SEC,
        render_options: Optional[RenderOptions] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._converter = converter
        self._fetcher = fetcher
        self._batch_size = batch_size
        self._batch_delay_sec = batch_delay_sec
        self._render_options = render_options
        self._sleep = sleep

    def batches(self, items: Sequence[WorkItem]) -> list[Sequence[WorkItem]]:
        size = self._batch_size
        return [items[i : i + size] for i in range(0, len(items), size)]

    async def run(
        self,
        items: Sequence[WorkItem],
        output_dir: Path,
        on_progress: Optional[ProgressSink] = None,
    ) -> BatchResult:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        result = BatchResult(total=len(items))
        batches = self.batches(items)

        for number, batch in enumerate(batches, start=1):
            processed = (number - 1) * self._batch_size
            log.info(
                "batch %s/%s: %s items (%s/%s processed)",
                number, len(batches), len(batch), processed, len(items),
            )
            self._emit(on_progress, BatchStarted(number, len(batches), processed, len(items)))

            await asyncio.gather(
                *(self._process_item(item, output_dir, result, on_progress) for item in batch)
            )

            if number < len(batches):
                await self._sleep(self._batch_delay_sec)

        log.info(
            "run complete: %s succeeded, %s failed, %s total",
            len(result.success), len(result.failed), result.total,
        )
        return result

    async def _process_item(
        self,
        item: WorkItem,
        output_dir: Path,
        result: BatchResult,
        on_progress: Optional[ProgressSink],
    ) -> None:
        try:
            error = await self._convert_and_fetch(item, output_dir)
        except Exception as e:
            log.exception("item %s: unexpected error", item.index)
            error = str(e) or e.__class__.__name__

        if error is None:
            record = ArtifactRecord(
                index=item.index,
                url=item.url,
                file_name=item.file_name,
                local_path=output_dir / item.file_name,
                label=item.label,
            )
            result.success.append(record)
            self._emit(on_progress, ItemSucceeded(item.index, item.file_name, item.url))
        else:
            log.warning("item %s (%s) failed: %s", item.index, item.url, error)
            result.failed.append(
                FailedItem(
                    index=item.index,
                    url=item.url,
                    file_name=item.file_name,
                    error=error,
                    label=item.label,
                )
            )
            self._emit(on_progress, ItemFailed(item.index, item.file_name, item.url, error))

    async def _convert_and_fetch(self, item: WorkItem, output_dir: Path) -> Optional[str]:
        """Return None on success, otherwise the error text for the item."""
        outcome = await asyncio.to_thread(
            self._converter.convert, item.url, item.file_name, self._render_options
        )
        if not outcome.ok:
            return outcome.reason
        try:
            await asyncio.to_thread(
                self._fetcher.fetch, outcome.artifact_ref, output_dir / item.file_name
            )
        except FetchError as e:
            return str(e)
        return None

    @staticmethod
    def _emit(sink: Optional[ProgressSink], event: ProgressEvent) -> None:
        if sink is None:
            return
        try:
            sink(event)
        except Exception:
            log.exception("progress sink raised for %s", event)
