import asyncio
import logging
import re
import zipfile
from pathlib import Path

from ..conversion.models import BatchResult
from ..conversion.registry import Job
from ..errors import DeliveryError, DeliverySizeExceeded
from .index import INDEX_FILE_NAME, build_index, render_email_html
from .interfaces import DeliveryMethod, DeliveryResult, DeliveryStrategy, MailGateway

log = logging.getLogger(__name__)

METHOD_LABEL = "Email"
DEFAULT_MAX_BUNDLE_BYTES = 25 * 1024 * 1024


def bundle_file_name(folder_name: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", folder_name, flags=re.IGNORECASE) + ".zip"


def create_bundle(result: BatchResult, bundle_path: Path, index_content: str) -> int:
    """Write the ZIP bundle and return its size in bytes.

    Artifacts whose local file has disappeared are skipped; names that repeat
    overwrite earlier entries for the reader (last one wins on extraction).
    """
    bundle_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(bundle_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
        for record in sorted(result.success, key=lambda r: r.index):
            if Path(record.local_path).exists():
                zf.write(record.local_path, arcname=record.file_name)
            else:
                log.warning("bundle: missing artifact %s", record.local_path)
        zf.writestr(INDEX_FILE_NAME, index_content)
    return bundle_path.stat().st_size


class MailBundleDelivery(DeliveryStrategy):
    """Compress all artifacts into one ZIP and mail it to the recipient."""

    method = DeliveryMethod.EMAIL

    def __init__(
        self,
        mail: MailGateway,
        bundle_dir: Path,
        *,
        max_bundle_bytes: int = DEFAULT_MAX_BUNDLE_BYTES,
    ) -> None:
        self._mail = mail
        self._bundle_dir = Path(bundle_dir)
        self._max_bundle_bytes = max_bundle_bytes

    async def deliver(self, result: BatchResult, job: Job) -> DeliveryResult:
        attachment_name = bundle_file_name(job.folder_name)
        # concurrent jobs may share a folder name
        bundle_path = self._bundle_dir / f"{job.id}-{attachment_name}"
        try:
            index = build_index(result, job.folder_name)
            size = await asyncio.to_thread(create_bundle, result, bundle_path, index)
            log.info("bundle %s created: %.2f MB", bundle_path.name, size / 1024 / 1024)
            if size > self._max_bundle_bytes:
                raise DeliverySizeExceeded(size, self._max_bundle_bytes)

            log.info("sending bundle for job %s to %s", job.id, job.recipient_email)
            message_id = await asyncio.to_thread(
                self._mail.send,
                job.recipient_email,
                f"Your PDFs are Ready: {job.folder_name}",
                render_email_html(result, job.folder_name),
                bundle_path,
                attachment_name,
            )
            return DeliveryResult(
                success=True,
                method=METHOD_LABEL,
                details={"messageId": message_id, "bundleSize": size, "bundleName": attachment_name},
            )
        except DeliveryError as e:
            log.warning("mail delivery for job %s failed: %s", job.id, e)
            return DeliveryResult(success=False, method=METHOD_LABEL, error=str(e))
        except OSError as e:
            log.exception("mail delivery for job %s failed while bundling", job.id)
            return DeliveryResult(success=False, method=METHOD_LABEL, error=str(e))
        finally:
            bundle_path.unlink(missing_ok=True)
