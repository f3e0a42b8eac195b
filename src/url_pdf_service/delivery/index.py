"""Human-readable summaries shipped alongside delivered PDFs."""

from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Optional, Union

from ..conversion.models import ArtifactRecord, BatchResult, FailedItem

INDEX_FILE_NAME = "INDEX.txt"


def _in_input_order(result: BatchResult) -> list[Union[ArtifactRecord, FailedItem]]:
    return sorted([*result.success, *result.failed], key=lambda item: item.index)


def build_index(
    result: BatchResult, folder_name: str, *, generated_at: Optional[datetime] = None
) -> str:
    """Plain-text listing of every item, successful or not, in input order."""
    when = (generated_at or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M:%S UTC")
    lines = [
        "URL to PDF Conversion Index",
        "=" * 27,
        f"Folder: {folder_name}",
        f"Generated: {when}",
        f"Total URLs: {result.total}",
        f"Converted: {len(result.success)}",
        f"Failed: {len(result.failed)}",
        "",
    ]
    for item in _in_input_order(result):
        ok = isinstance(item, ArtifactRecord)
        lines.append(f"{item.index:03d}. [{'OK' if ok else 'FAILED'}] {item.file_name}")
        if item.label:
            lines.append(f"     Label: {item.label}")
        lines.append(f"     URL: {item.url}")
        if ok:
            lines.append("     Status: Converted successfully")
        else:
            lines.append(f"     Error: {item.error}")
        lines.append("")
    return "\n".join(lines)


def _short(url: str, limit: int = 50) -> str:
    return url if len(url) <= limit else url[:limit] + "..."


def render_email_html(result: BatchResult, folder_name: str) -> str:
    """HTML body for the bundle mail; every user-supplied value is escaped."""
    esc = html.escape
    parts = [
        "<!DOCTYPE html>",
        "<html><head><style>",
        "body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }",
        ".container { max-width: 600px; margin: 0 auto; padding: 20px; }",
        ".header { background: #2563eb; color: white; padding: 20px; }",
        ".stat { display: inline-block; padding: 10px 15px; text-align: center; }",
        ".success { color: #16a34a; } .failed { color: #dc2626; }",
        "table { width: 100%; border-collapse: collapse; }",
        "th, td { padding: 8px; text-align: left; border-bottom: 1px solid #e2e8f0; }",
        "</style></head><body><div class=\"container\">",
        "<div class=\"header\"><h1>Your PDFs are Ready!</h1>",
        f"<p>{esc(folder_name)}</p></div>",
        "<p>Your URL to PDF conversion is complete. "
        "Please find the attached ZIP file containing your PDFs.</p>",
        f"<div class=\"stat\"><strong>{result.total}</strong><br>Total URLs</div>",
        f"<div class=\"stat success\"><strong>{len(result.success)}</strong><br>Converted</div>",
        f"<div class=\"stat failed\"><strong>{len(result.failed)}</strong><br>Failed</div>",
    ]
    if result.failed:
        parts.append("<h3>Failed Conversions:</h3>")
        parts.append("<table><tr><th>#</th><th>URL</th><th>Error</th></tr>")
        for item in sorted(result.failed, key=lambda f: f.index):
            parts.append(
                f"<tr><td>{item.index}</td><td>{esc(_short(item.url))}</td>"
                f"<td>{esc(item.error)}</td></tr>"
            )
        parts.append("</table>")
    parts.append("<p style=\"font-size: 12px; color: #94a3b8;\">Generated by URL to PDF Tool</p>")
    parts.append("</div></body></html>")
    return "\n".join(parts)
