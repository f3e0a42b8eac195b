import asyncio
import logging
from typing import Any, Optional

from ..conversion.models import BatchResult
from ..conversion.registry import Job
from ..errors import DeliveryError, DeliveryTransportError
from .index import INDEX_FILE_NAME, build_index
from .interfaces import DeliveryMethod, DeliveryResult, DeliveryStrategy, DriveGateway

log = logging.getLogger(__name__)

METHOD_LABEL = "Google Drive"


class DriveShareDelivery(DeliveryStrategy):
    """Upload artifacts into a fresh Drive folder shared with the recipient.

    Folder creation and sharing must succeed; individual uploads may fail and
    are only tallied.
    """

    method = DeliveryMethod.DRIVE

    def __init__(self, drive: DriveGateway, *, parent_folder_id: Optional[str] = None) -> None:
        self._drive = drive
        self._parent_folder_id = parent_folder_id

    async def deliver(self, result: BatchResult, job: Job) -> DeliveryResult:
        try:
            return await self._deliver(result, job)
        except DeliveryError as e:
            log.warning("drive delivery for job %s failed: %s", job.id, e)
            return DeliveryResult(success=False, method=METHOD_LABEL, error=str(e))

    async def _deliver(self, result: BatchResult, job: Job) -> DeliveryResult:
        folder = await asyncio.to_thread(
            self._drive.create_folder, job.folder_name, self._parent_folder_id
        )
        log.info("created folder %s (%s) for job %s", folder.name, folder.id, job.id)

        uploads: list[dict[str, Any]] = []
        for record in sorted(result.success, key=lambda r: r.index):
            try:
                remote = await asyncio.to_thread(
                    self._drive.upload_file, record.local_path, record.file_name, folder.id
                )
            except Exception as e:
                log.warning("upload of %s failed: %s", record.file_name, e)
                uploads.append({"success": False, "fileName": record.file_name, "error": str(e)})
                continue
            uploads.append(
                {
                    "success": True,
                    "fileName": record.file_name,
                    "fileId": remote.id,
                    "webViewLink": remote.web_view_link,
                }
            )

        index_uploaded = True
        try:
            await asyncio.to_thread(
                self._drive.upload_text, build_index(result, job.folder_name), INDEX_FILE_NAME, folder.id
            )
        except Exception as e:
            index_uploaded = False
            log.warning("index upload for job %s failed: %s", job.id, e)

        share_link = await asyncio.to_thread(self._drive.share_with, folder.id, job.recipient_email, "reader")
        if not share_link:
            raise DeliveryTransportError("Drive did not return a shareable link")
        log.info("shared folder %s with %s", folder.id, job.recipient_email)

        uploaded = sum(1 for u in uploads if u["success"])
        return DeliveryResult(
            success=True,
            method=METHOD_LABEL,
            details={
                "folderId": folder.id,
                "folderName": folder.name,
                "shareLink": share_link,
                "uploadedFiles": uploaded,
                "failedFiles": len(uploads) - uploaded,
                "indexUploaded": index_uploaded,
                "results": uploads,
            },
        )
