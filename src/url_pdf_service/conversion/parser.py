"""Normalize pasted or uploaded URL lists into ordered work items.

Two encodings are accepted:

* ``text``: one URL per line, optionally ``url, label, file name`` (CSV-like).
  Lines whose first field is not an http(s) URL are skipped without error.
* ``json``: a list whose elements are URL strings or objects carrying ``url``
  plus optional ``fileName``/``name`` and ``label``/``description``.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from ..errors import ParseError
from .models import WorkItem

TEXT = "text"
JSON = "json"

URL_SCHEMES = ("http://", "https://")

_LINE_SPLIT = re.compile(r"[\r\n]+")


def default_file_name(position: int) -> str:
    return f"PDF_{position:03d}.pdf"


def detect_format(text: str, filename: Optional[str] = None) -> str:
    """Guess the input encoding from an upload name or the text itself."""
    if filename and filename.lower().endswith(".json"):
        return JSON
    if text.lstrip().startswith("["):
        return JSON
    return TEXT


def parse_urls(text: str, fmt: str = TEXT) -> list[WorkItem]:
    """Parse *text* in format *fmt* into work items numbered from 1."""
    if fmt == JSON:
        entries = _parse_json(text)
    elif fmt == TEXT:
        entries = _parse_text(text)
    else:
        raise ParseError(f"unknown input format: {fmt}")

    items: list[WorkItem] = []
    for url, label, file_name in entries:
        position = len(items) + 1
        items.append(
            WorkItem(
                index=position,
                url=url,
                label=label,
                file_name=file_name or default_file_name(position),
            )
        )
    return items


def _is_url(value: str) -> bool:
    return value.startswith(URL_SCHEMES)


def _parse_text(text: str) -> list[tuple[str, str, str]]:
    entries = []
    for line in _LINE_SPLIT.split(text):
        if not line.strip():
            continue
        parts = [p.strip() for p in line.split(",", 2)]
        url = parts[0]
        if not url or not _is_url(url):
            continue
        label = parts[1] if len(parts) > 1 else ""
        file_name = parts[2] if len(parts) > 2 else ""
        entries.append((url, label, file_name))
    return entries


def _first_str(obj: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _parse_json(text: str) -> list[tuple[str, str, str]]:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(f"Invalid JSON format: {e}") from e
    if not isinstance(data, list):
        raise ParseError("Invalid JSON format: expected a list of URLs")

    entries = []
    for element in data:
        if isinstance(element, str):
            url = element.strip()
            if url:
                entries.append((url, "", ""))
        elif isinstance(element, dict):
            url = _first_str(element, "url")
            if not url:
                continue
            entries.append(
                (
                    url,
                    _first_str(element, "label", "description"),
                    _first_str(element, "fileName", "name"),
                )
            )
    return entries
