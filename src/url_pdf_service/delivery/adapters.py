import base64
import io
import json
import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import make_msgid
from pathlib import Path
from typing import Any, Optional, Sequence

from ..errors import DeliveryTransportError
from .interfaces import DriveGateway, MailGateway, RemoteFile

log = logging.getLogger(__name__)

DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive.file"]
GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.send"]
FOLDER_MIME = "application/vnd.google-apps.folder"
SHARE_MESSAGE = "Your PDF files are ready! Click the link to access them."

# EMAIL_SERVICE names and their SMTP endpoints
SMTP_SERVICES = {
    "gmail": ("smtp.gmail.com", 465),
    "outlook": ("smtp-mail.outlook.com", 587),
    "hotmail": ("smtp-mail.outlook.com", 587),
    "office365": ("smtp.office365.com", 587),
    "yahoo": ("smtp.mail.yahoo.com", 465),
}


def resolve_smtp_endpoint(service: Optional[str], host: str, port: int) -> tuple[str, int]:
    """Pick the SMTP host and port, preferring a known ``service`` name."""
    if service:
        endpoint = SMTP_SERVICES.get(service.strip().lower())
        if endpoint:
            return endpoint
        log.warning("unknown EMAIL_SERVICE %r, using %s:%s", service, host, port)
    return host, port


def build_message(
    sender: str,
    recipient: str,
    subject: str,
    html_body: str,
    attachment_path: Path,
    attachment_name: str,
) -> EmailMessage:
    msg = EmailMessage()
    if sender:
        msg["From"] = sender
    msg["To"] = recipient
    msg["Subject"] = subject
    msg["Message-ID"] = make_msgid()
    msg.set_content("Your PDFs are ready. Open this message in an HTML-capable client.")
    msg.add_alternative(html_body, subtype="html")
    msg.add_attachment(
        Path(attachment_path).read_bytes(),
        maintype="application",
        subtype="zip",
        filename=attachment_name,
    )
    return msg


class SmtpMailGateway(MailGateway):
    """Outbound mail over SMTP (STARTTLS, or implicit TLS on port 465)."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        user: str = "",
        password: str = "",
        sender: str = "",
        timeout: float = 60.0,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._sender = sender or user or "noreply@example.com"
        self._timeout = timeout

    def send(
        self,
        recipient: str,
        subject: str,
        html_body: str,
        attachment_path: Path,
        attachment_name: str,
    ) -> str:
        msg = build_message(self._sender, recipient, subject, html_body, attachment_path, attachment_name)
        try:
            with self._connect() as smtp:
                if self._user:
                    smtp.login(self._user, self._password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryTransportError(f"Email send failed: {e}") from e
        log.info("mail sent to %s (%s)", recipient, msg["Message-ID"])
        return str(msg["Message-ID"])

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self._port == 465:
            return smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout, context=context)
        smtp = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
        try:
            smtp.starttls(context=context)
        except smtplib.SMTPNotSupportedError:
            log.warning("SMTP server %s does not support STARTTLS", self._host)
        except Exception:
            smtp.close()
            raise
        return smtp


class GmailApiMailGateway(MailGateway):
    """Sends as the authorized Google user through the Gmail API."""

    def __init__(self, service: Any, *, sender: str = "") -> None:
        self._service = service
        self._sender = sender

    @classmethod
    def from_credentials_file(cls, credentials_file: Path, *, sender: str = "") -> "GmailApiMailGateway":
        from googleapiclient.discovery import build

        creds = load_google_credentials(Path(credentials_file), GMAIL_SCOPES, allow_service_account=False)
        return cls(build("gmail", "v1", credentials=creds, cache_discovery=False), sender=sender)

    def send(
        self,
        recipient: str,
        subject: str,
        html_body: str,
        attachment_path: Path,
        attachment_name: str,
    ) -> str:
        from googleapiclient.errors import HttpError

        msg = build_message(self._sender, recipient, subject, html_body, attachment_path, attachment_name)
        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")
        try:
            sent = self._service.users().messages().send(userId="me", body={"raw": raw}).execute()
        except (HttpError, OSError) as e:
            raise DeliveryTransportError(f"Email send failed: {e}") from e
        log.info("mail sent to %s via Gmail API (id %s)", recipient, sent.get("id"))
        return str(msg["Message-ID"])


def load_google_credentials(
    credentials_file: Path,
    scopes: Sequence[str],
    *,
    token_file: Optional[Path] = None,
    allow_service_account: bool = True,
):
    """Load existing Google credentials; interactive consent is not handled here.

    A service-account key is used directly. An OAuth client file needs an
    authorized-user ``token.json`` beside it, which is refreshed when stale.
    """
    from google.auth.exceptions import RefreshError
    from google.auth.transport.requests import Request
    from google.oauth2 import service_account
    from google.oauth2.credentials import Credentials

    if not credentials_file.exists():
        raise DeliveryTransportError(f"Google credentials file not found at: {credentials_file}")
    with credentials_file.open("r", encoding="utf-8") as f:
        info = json.load(f)

    if info.get("type") == "service_account":
        if not allow_service_account:
            raise DeliveryTransportError("Service account credentials cannot act as a mail user")
        return service_account.Credentials.from_service_account_info(info, scopes=list(scopes))
    if "installed" not in info and "web" not in info:
        raise DeliveryTransportError("Invalid credentials format")

    token_file = token_file or credentials_file.with_name("token.json")
    if not token_file.exists():
        raise DeliveryTransportError("OAuth token not found. Run the setup script first to authorize.")
    with token_file.open("r", encoding="utf-8") as f:
        token_info = json.load(f)
    try:
        creds = Credentials.from_authorized_user_info(token_info)
    except ValueError as e:
        raise DeliveryTransportError(f"Invalid OAuth token: {e}") from e
    if creds.scopes and not creds.has_scopes(list(scopes)):
        raise DeliveryTransportError(f"OAuth token lacks scopes: {', '.join(scopes)}")
    if not creds.valid:
        if not creds.refresh_token:
            raise DeliveryTransportError("OAuth token expired and cannot be refreshed")
        try:
            creds.refresh(Request())
        except RefreshError as e:
            raise DeliveryTransportError(f"OAuth token refresh failed: {e}") from e
    return creds


class GoogleDriveGateway(DriveGateway):
    """Drive v3 folder/upload/permission calls via google-api-python-client."""

    def __init__(self, service: Any) -> None:
        self._service = service

    @classmethod
    def from_credentials_file(cls, credentials_file: Path) -> "GoogleDriveGateway":
        from googleapiclient.discovery import build

        creds = load_google_credentials(Path(credentials_file), DRIVE_SCOPES)
        return cls(build("drive", "v3", credentials=creds, cache_discovery=False))

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> RemoteFile:
        metadata: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME}
        if parent_id:
            metadata["parents"] = [parent_id]
        data = self._execute(
            self._service.files().create(body=metadata, fields="id, name, webViewLink"),
            f"create folder {name!r}",
        )
        return _remote_file(data)

    def upload_file(
        self, path: Path, name: str, folder_id: str, mime_type: str = "application/pdf"
    ) -> RemoteFile:
        from googleapiclient.http import MediaFileUpload

        media = MediaFileUpload(str(path), mimetype=mime_type, resumable=False)
        return self._create_file(name, folder_id, media)

    def upload_text(self, content: str, name: str, folder_id: str) -> RemoteFile:
        from googleapiclient.http import MediaIoBaseUpload

        media = MediaIoBaseUpload(io.BytesIO(content.encode("utf-8")), mimetype="text/plain")
        return self._create_file(name, folder_id, media)

    def share_with(self, file_id: str, email: str, role: str = "reader") -> str:
        self._execute(
            self._service.permissions().create(
                fileId=file_id,
                body={"type": "user", "role": role, "emailAddress": email},
                sendNotificationEmail=True,
                emailMessage=SHARE_MESSAGE,
            ),
            f"share {file_id} with {email}",
        )
        data = self._execute(
            self._service.files().get(fileId=file_id, fields="webViewLink"),
            f"get link for {file_id}",
        )
        return str(data.get("webViewLink") or "")

    def _create_file(self, name: str, folder_id: str, media: Any) -> RemoteFile:
        metadata = {"name": name, "parents": [folder_id] if folder_id else []}
        data = self._execute(
            self._service.files().create(body=metadata, media_body=media, fields="id, name, webViewLink"),
            f"upload {name!r}",
        )
        return _remote_file(data)

    @staticmethod
    def _execute(request: Any, what: str) -> dict[str, Any]:
        from googleapiclient.errors import HttpError

        try:
            return request.execute()
        except (HttpError, OSError) as e:
            raise DeliveryTransportError(f"Google Drive: failed to {what}: {e}") from e


def _remote_file(data: dict[str, Any]) -> RemoteFile:
    return RemoteFile(id=str(data["id"]), name=str(data.get("name", "")), web_view_link=data.get("webViewLink"))
