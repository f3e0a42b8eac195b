import logging
import os

from fastapi import FastAPI, File, Form, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse

from .config import Settings
from .conversion import BatchScheduler, ConversionService, JobRegistry, detect_format, parse_urls
from .conversion.adapters import Api2PdfClient, HttpArtifactFetcher, pooled_session
from .conversion.models import WorkItem
from .delivery import DeliveryMethod, DriveShareDelivery, MailBundleDelivery, MailGateway
from .delivery.adapters import GmailApiMailGateway, GoogleDriveGateway, SmtpMailGateway, resolve_smtp_endpoint
from .errors import JobNotFound, ParseError, SubmissionRejected

log = logging.getLogger(__name__)

app = FastAPI(
    title="URL to PDF Delivery Service",
    version=os.getenv("URL_PDF_SERVICE_VERSION", "0.1.0"),
    description=(
        "Converts batches of URLs into PDFs and delivers them by email "
        "or through a shared Google Drive folder."
    ),
)

SETTINGS = Settings.from_env()
ALLOWED_UPLOAD_EXTS = {".txt", ".csv", ".json"}

SERVICE: ConversionService | None = None


def build_mail_gateway(settings: Settings) -> MailGateway:
    """Prefer Gmail API with the OAuth token; fall back to SMTP."""
    try:
        gateway = GmailApiMailGateway.from_credentials_file(
            settings.google_credentials_path, sender=settings.email_from
        )
    except Exception as e:
        log.info("Gmail OAuth2 mail unavailable, falling back to SMTP: %s", e)
    else:
        log.info("mail: using Gmail API with OAuth2")
        return gateway

    host, port = resolve_smtp_endpoint(settings.email_service, settings.email_host, settings.email_port)
    log.info("mail: using SMTP %s:%s", host, port)
    return SmtpMailGateway(
        host,
        port,
        user=settings.email_user,
        password=settings.email_password,
        sender=settings.email_from,
    )


def build_service(settings: Settings) -> ConversionService:
    """Construct every external client once and wire them into the service."""
    pool_size = settings.workers * settings.batch_size
    session = pooled_session(pool_size)
    converter = Api2PdfClient(
        settings.api2pdf_api_key,
        endpoint=settings.api2pdf_endpoint,
        timeout=settings.convert_timeout_sec,
        session=session,
        max_workers=pool_size,
    )
    fetcher = HttpArtifactFetcher(timeout=settings.download_timeout_sec, session=session)
    scheduler = BatchScheduler(
        converter,
        fetcher,
        batch_size=settings.batch_size,
        batch_delay_sec=settings.batch_delay_sec,
    )
    registry = JobRegistry(max_jobs=settings.max_jobs, job_ttl_sec=settings.job_ttl_sec)

    mail = build_mail_gateway(settings)
    strategies = {
        DeliveryMethod.EMAIL: MailBundleDelivery(
            mail, settings.data_dir / "tmp", max_bundle_bytes=settings.max_bundle_bytes
        ),
    }
    try:
        drive = GoogleDriveGateway.from_credentials_file(settings.google_credentials_path)
    except Exception as e:
        log.warning("Google Drive delivery disabled: %s", e)
    else:
        strategies[DeliveryMethod.DRIVE] = DriveShareDelivery(
            drive, parent_folder_id=settings.drive_parent_folder_id
        )

    return ConversionService(
        registry,
        scheduler,
        strategies,
        settings.jobs_dir,
        workers=settings.workers,
        keep_artifacts=settings.keep_artifacts,
    )


def _service() -> ConversionService:
    if SERVICE is None:
        raise HTTPException(status_code=503, detail={"code": "not_ready", "message": "service not started"})
    return SERVICE


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": "bad_request", "message": message})


async def _read_items(url_text: str | None, url_file: UploadFile | None, fmt: str | None) -> list[WorkItem]:
    """Resolve the submitted text or uploaded file into parsed work items."""
    filename = None
    if url_file is not None and url_file.filename:
        filename = url_file.filename
        _, ext = os.path.splitext(filename.lower())
        if ext not in ALLOWED_UPLOAD_EXTS:
            raise HTTPException(
                status_code=415,
                detail={"code": "unsupported_media_type", "message": "Only .txt, .csv, and .json files are allowed"},
            )
        max_bytes = SETTINGS.max_upload_mb * 1024 * 1024
        raw = await url_file.read(max_bytes + 1)
        if len(raw) > max_bytes:
            raise HTTPException(
                status_code=413,
                detail={"code": "payload_too_large", "message": f"upload exceeds {SETTINGS.max_upload_mb} MB"},
            )
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise _bad_request("Uploaded file must be UTF-8 text")
    else:
        text = url_text or ""

    if not text.strip():
        raise _bad_request("Please provide URLs as text or upload a file")
    try:
        return parse_urls(text, fmt or detect_format(text, filename))
    except ParseError as e:
        raise _bad_request(str(e))


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.on_event("startup")
async def _startup() -> None:
    global SERVICE
    if SERVICE is None:
        SETTINGS.jobs_dir.mkdir(parents=True, exist_ok=True)
        SERVICE = build_service(SETTINGS)
    await SERVICE.start()


@app.on_event("shutdown")
async def _shutdown() -> None:
    if SERVICE is not None:
        await SERVICE.stop()


@app.post("/api/pdf/convert", status_code=status.HTTP_202_ACCEPTED)
async def convert(
    url_text: str | None = Form(None, alias="urlText"),
    url_file: UploadFile | None = File(None, alias="urlFile"),
    delivery_method: str = Form("drive", alias="deliveryMethod"),
    recipient_email: str = Form("", alias="recipientEmail"),
    folder_name: str | None = Form(None, alias="folderName"),
    fmt: str | None = Form(None, alias="format"),
) -> JSONResponse:
    """Accept a batch of URLs and start a conversion job.

    Accepts multipart/form-data with either ``urlText`` or an uploaded
    ``urlFile`` (.txt/.csv/.json). Returns 202 with the job id and the URL to
    poll for status.
    """
    service = _service()
    items = await _read_items(url_text, url_file, fmt)
    try:
        job = await service.submit(items, recipient_email, delivery_method, folder_name)
    except SubmissionRejected as e:
        raise _bad_request(str(e))

    status_url = f"/api/pdf/status/{job.id}"
    body = {
        "jobId": job.id,
        "message": f"Conversion started for {len(items)} URLs",
        "statusUrl": status_url,
    }
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body, headers={"Location": status_url})


@app.post("/api/pdf/parse")
async def parse_preview(
    url_text: str | None = Form(None, alias="urlText"),
    url_file: UploadFile | None = File(None, alias="urlFile"),
    fmt: str | None = Form(None, alias="format"),
) -> dict[str, object]:
    """Parse submitted URLs without creating a job."""
    items = await _read_items(url_text, url_file, fmt)
    return {"count": len(items), "items": [item.to_dict() for item in items]}


@app.get("/api/pdf/status/{job_id}")
async def get_status(job_id: str) -> JSONResponse:
    service = _service()
    try:
        job = service.get_job(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "job not found"})
    return JSONResponse(content=job.to_dict())


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, SETTINGS.log_level, logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.WARNING)

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = os.getenv("RELOAD", "true").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("url_pdf_service.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
