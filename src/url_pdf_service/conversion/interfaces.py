from pathlib import Path
from typing import Callable, Optional, Protocol

from .models import ConversionOutcome, ProgressEvent, RenderOptions


class ConverterGateway(Protocol):
    def convert(
        self, url: str, file_name: str, options: Optional[RenderOptions] = None
    ) -> ConversionOutcome:
        """Render one URL into a retrievable PDF reference.

        This is a blocking call that never raises; every outcome is returned as
        a ConversionSuccess or ConversionFailure. Callers offload it to threads.
        """


class FetcherGateway(Protocol):
    def fetch(self, artifact_ref: str, local_path: Path) -> Path:
        """Download the artifact to local_path, raising FetchError on failure.

        Blocking; no partial file is left behind when it raises.
        """


ProgressSink = Callable[[ProgressEvent], None]
