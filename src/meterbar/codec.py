"""
shared persisted form of an Aggregate, used by both the metrics cache
and the shared publication store. Keeping a single codec means the
two documents can never drift apart in shape.
"""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any

import structlog

from meterbar.models import Aggregate, MetricsSnapshot, Source, UsageWindow

logger = structlog.get_logger()

DOCUMENT_VERSION = 1


def _format_time(value: "datetime | None") -> "str | None":
    if value is None:
        return None
    return value.isoformat()


def _parse_time(value: "Any") -> "datetime | None":
    if value is None:
        return None
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def encode_window(window: "UsageWindow") -> "dict[str, Any]":
    return {
        "used": window.used,
        "total": window.total,
        "reset_time": _format_time(window.reset_time),
    }


def decode_window(data: "dict[str, Any]") -> "UsageWindow":
    return UsageWindow(
        used=float(data["used"]),
        total=float(data["total"]),
        reset_time=_parse_time(data.get("reset_time")),
    )


def encode_aggregate(aggregate: "Aggregate") -> "dict[str, Any]":
    sources: "dict[str, Any]" = {}
    for source, snapshot in aggregate.items():
        sources[source.value] = {
            "fetched_at": _format_time(snapshot.fetched_at),
            "windows": {
                name: encode_window(window)
                for name, window in snapshot.windows.items()
            },
        }

    return {
        "version": DOCUMENT_VERSION,
        "updated_at": _format_time(datetime.now(timezone.utc)),
        "sources": sources,
    }


def decode_aggregate(document: "Any") -> "Aggregate":
    """
    decodes a persisted document. Entries for sources unknown to this
    build are dropped, as are malformed entries; the rest survive.
    A document that is not an object at all decodes to an empty
    aggregate.
    """
    aggregate: "Aggregate" = {}
    if not isinstance(document, dict):
        return aggregate

    sources = document.get("sources")
    if not isinstance(sources, dict):
        return aggregate

    for key, entry in sources.items():
        source = Source.parse(key)
        if source is None:
            logger.debug("unknown_source_skipped", source=key)
            continue

        try:
            windows = {
                str(name): decode_window(window)
                for name, window in entry["windows"].items()
            }
            fetched_at = _parse_time(entry.get("fetched_at"))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("malformed_entry_skipped", source=key, error=str(e))
            continue

        aggregate[source] = MetricsSnapshot(
            source=source,
            windows=windows,
            fetched_at=fetched_at or datetime.now(timezone.utc),
        )

    return aggregate


def write_document(path: "str", document: "dict[str, Any]") -> "None":
    """
    writes the document atomically: readers see either the previous
    file or the complete new one, never a truncated write.
    """
    dir_name = os.path.dirname(path) or "."
    os.makedirs(dir_name, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=".meterbar_", dir=dir_name, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def read_document(path: "str") -> "Any":
    """
    returns the parsed JSON at path, or None when the file is missing
    or does not parse.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError, RecursionError) as e:
        logger.warning("document_unreadable", path=path, error=str(e))
        return None


def remove_document(path: "str") -> "bool":
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
