"""
Domain layer for URL-to-PDF conversion.
Provides the URL parser, gateways to the rendering service, the batch
scheduler, the in-memory job registry and a service that orchestrates jobs,
so front-ends (HTTP or others) can share the same core logic.
"""

from .interfaces import ConverterGateway, FetcherGateway, ProgressSink
from .models import ArtifactRecord, BatchResult, FailedItem, RenderOptions, WorkItem
from .parser import detect_format, parse_urls
from .registry import Job, JobRegistry, JobStatus
from .scheduler import BatchScheduler
from .service import ConversionService
