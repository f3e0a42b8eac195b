import asyncio
import os
from pathlib import Path

from conftest import FakeDrive, FakeMail, make_batch_result
from url_pdf_service.conversion.models import ArtifactRecord, BatchResult, FailedItem
from url_pdf_service.conversion.registry import Job
from url_pdf_service.delivery import DeliveryMethod, DriveShareDelivery, MailBundleDelivery, build_index, render_email_html
from url_pdf_service.delivery.mail_bundle import bundle_file_name


def _job(method: str = "email", folder: str = "Client Report #1") -> Job:
    return Job(id="job-1", recipient_email="someone@example.com", delivery_method=method, folder_name=folder)


class TestMailBundleDelivery:
    def test_sends_zip_with_artifacts_and_index(self, tmp_path: Path):
        mail = FakeMail()
        bundles = tmp_path / "bundles"
        result = make_batch_result(tmp_path, ok=2, failed=1)
        delivery = asyncio.run(MailBundleDelivery(mail, bundles).deliver(result, _job()))

        assert delivery.success is True
        data = delivery.to_dict()
        assert data["method"] == "Email"
        assert data["messageId"] == "<msg-1@example.com>"
        assert data["bundleSize"] > 0
        assert "error" not in data

        sent = mail.sent[0]
        assert sent["recipient"] == "someone@example.com"
        assert sent["subject"] == "Your PDFs are Ready: Client Report #1"
        assert sent["name"] == "Client_Report__1.zip"
        assert sorted(sent["entries"]) == ["INDEX.txt", "PDF_001.pdf", "PDF_002.pdf"]
        assert "[FAILED] PDF_003.pdf" in sent["index"]
        assert not sent["path"].exists()
        assert list(bundles.iterdir()) == []

    def test_oversized_bundle_is_rejected_and_removed(self, tmp_path: Path):
        mail = FakeMail()
        bundles = tmp_path / "bundles"
        result = make_batch_result(tmp_path, ok=2, payload=os.urandom(4096))
        delivery = asyncio.run(MailBundleDelivery(mail, bundles, max_bundle_bytes=1024).deliver(result, _job()))

        assert delivery.success is False
        assert "too large" in delivery.error
        assert "Google Drive" in delivery.error
        assert mail.sent == []
        assert list(bundles.iterdir()) == []

    def test_transport_failure_is_reported_and_bundle_removed(self, tmp_path: Path):
        mail = FakeMail(error="Email send failed: 535 auth rejected")
        bundles = tmp_path / "bundles"
        delivery = asyncio.run(MailBundleDelivery(mail, bundles).deliver(make_batch_result(tmp_path, ok=1), _job()))

        assert delivery.success is False
        assert delivery.to_dict()["error"] == "Email send failed: 535 auth rejected"
        assert list(bundles.iterdir()) == []

    def test_missing_local_artifact_is_skipped(self, tmp_path: Path):
        mail = FakeMail()
        result = make_batch_result(tmp_path, ok=2)
        result.success[0].local_path.unlink()
        delivery = asyncio.run(MailBundleDelivery(mail, tmp_path / "b").deliver(result, _job()))
        assert delivery.success is True
        assert sorted(mail.sent[0]["entries"]) == ["INDEX.txt", "PDF_002.pdf"]

    def test_strategy_tag(self):
        assert MailBundleDelivery.method is DeliveryMethod.EMAIL


def test_bundle_file_name_sanitizes():
    assert bundle_file_name("PDFs 2024/05") == "PDFs_2024_05.zip"


class TestDriveShareDelivery:
    def test_partial_upload_failure_still_succeeds(self, tmp_path: Path):
        drive = FakeDrive(failing_uploads={"PDF_003.pdf", "PDF_007.pdf"})
        result = make_batch_result(tmp_path, ok=10)
        delivery = asyncio.run(DriveShareDelivery(drive, parent_folder_id="root-1").deliver(result, _job("drive")))

        data = delivery.to_dict()
        assert data["success"] is True
        assert data["method"] == "Google Drive"
        assert data["uploadedFiles"] == 8
        assert data["failedFiles"] == 2
        assert data["shareLink"] == "https://drive.example.com/folder-1?shared"
        assert data["indexUploaded"] is True
        assert drive.folders == [("Client Report #1", "root-1")]
        assert drive.shares == [("folder-1", "someone@example.com", "reader")]
        assert drive.texts[0][0] == "INDEX.txt"
        failed = [r for r in data["results"] if not r["success"]]
        assert {r["fileName"] for r in failed} == {"PDF_003.pdf", "PDF_007.pdf"}

    def test_folder_creation_failure_fails_delivery(self, tmp_path: Path):
        drive = FakeDrive(folder_error="Google Drive: failed to create folder: 403")
        delivery = asyncio.run(DriveShareDelivery(drive).deliver(make_batch_result(tmp_path, ok=1), _job("drive")))
        assert delivery.success is False
        assert delivery.error == "Google Drive: failed to create folder: 403"
        assert drive.uploads == []

    def test_index_upload_failure_is_not_fatal(self, tmp_path: Path):
        drive = FakeDrive(index_error=True)
        delivery = asyncio.run(DriveShareDelivery(drive).deliver(make_batch_result(tmp_path, ok=1), _job("drive")))
        assert delivery.success is True
        assert delivery.to_dict()["indexUploaded"] is False


def test_index_lists_every_item_in_input_order():
    result = BatchResult(total=3)
    result.failed.append(FailedItem(index=2, url="https://b.com", file_name="b.pdf", error="HTTP 500", label="Bee"))
    result.success.append(ArtifactRecord(index=3, url="https://c.com", file_name="c.pdf", local_path=Path("c.pdf")))
    result.success.append(ArtifactRecord(index=1, url="https://a.com", file_name="a.pdf", local_path=Path("a.pdf"), label="Ay"))

    index = build_index(result, "Folder")
    assert "Total URLs: 3" in index
    assert "Converted: 2" in index
    assert "Failed: 1" in index
    assert index.index("001. [OK] a.pdf") < index.index("002. [FAILED] b.pdf") < index.index("003. [OK] c.pdf")
    assert "Label: Bee" in index
    assert "Error: HTTP 500" in index
    assert "Label: Ay" in index


def test_email_html_escapes_user_data():
    result = BatchResult(total=1)
    result.failed.append(FailedItem(index=1, url="https://x.com/<script>", file_name="x.pdf", error="<b>bad</b>"))
    html = render_email_html(result, "<Folder & Co>")
    assert "&lt;Folder &amp; Co&gt;" in html
    assert "<script>" not in html
    assert "&lt;b&gt;bad&lt;/b&gt;" in html
