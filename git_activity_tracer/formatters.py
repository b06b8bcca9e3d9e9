"""Rendering contributions as console text, JSON or CSV."""

import csv
import io
import json
from collections.abc import Iterable
from datetime import datetime, timezone

from .errors import ValidationError
from .models import Contribution

OUTPUT_FORMATS = ("console", "json", "csv")


def _sorted(contributions: Iterable[Contribution]) -> list[Contribution]:
    return sorted(contributions, key=lambda c: c.occurred_at)


def _utc_date(contribution: Contribution) -> str:
    return contribution.occurred_at.astimezone(timezone.utc).strftime("%Y-%m-%d")


def format_console(contributions: Iterable[Contribution], with_links: bool = False) -> str:
    """Build a plain-text listing grouped by day.

    Args:
        contributions: Contributions to render
        with_links: Append each contribution's URL

    Returns:
        One "## YYYY-MM-DD" heading per UTC day followed by its entries
    """
    contributions = _sorted(contributions)
    if not contributions:
        return "No contributions found in this range"

    lines = []
    current_date = None
    for contribution in contributions:
        day = _utc_date(contribution)
        if day != current_date:
            lines.append("")
            lines.append(f"## {day}")
            current_date = day

        parts = [
            contribution.type.value,
            contribution.occurred_at.astimezone(timezone.utc).strftime("%H:%M:%S"),
        ]
        if contribution.repository:
            parts.append(f"[{contribution.repository}]")
        if contribution.target:
            parts.append(f"({contribution.target})")
        if contribution.text:
            parts.append(contribution.text)
        if with_links and contribution.url:
            parts.append(f"({contribution.url})")

        lines.append(": ".join(parts))

    return "\n".join(lines)


def format_json(contributions: Iterable[Contribution], with_links: bool = False) -> str:
    """Build a JSON array with one object per contribution."""
    items = []
    for contribution in _sorted(contributions):
        item = {
            "type": contribution.type.value,
            "timestamp": contribution.timestamp,
            "date": _utc_date(contribution),
        }
        if contribution.repository:
            item["repository"] = contribution.repository
        if contribution.target:
            item["target"] = contribution.target
        if contribution.project_id:
            item["projectId"] = contribution.project_id
        if contribution.text:
            item["text"] = contribution.text
        if with_links and contribution.url:
            item["url"] = contribution.url
        items.append(item)

    return json.dumps(items, indent=2)


def format_csv(contributions: Iterable[Contribution], with_links: bool = False) -> str:
    """Build CSV with a header row; fields are quoted only when needed."""
    header = ["type", "timestamp", "date", "repository", "target", "text"]
    if with_links:
        header.append("url")

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)

    for contribution in _sorted(contributions):
        row = [
            contribution.type.value,
            contribution.timestamp,
            _utc_date(contribution),
            contribution.repository or "",
            contribution.target or "",
            contribution.text or "",
        ]
        if with_links:
            row.append(contribution.url or "")
        writer.writerow(row)

    return buffer.getvalue().rstrip("\n")


def format_contributions(
    contributions: Iterable[Contribution], output_format: str = "console", with_links: bool = False
) -> str:
    """Render contributions in the requested format.

    Raises:
        ValidationError: If the format is not one of console, json or csv
    """
    formatters = {
        "console": format_console,
        "json": format_json,
        "csv": format_csv,
    }
    formatter = formatters.get(output_format.lower())
    if formatter is None:
        raise ValidationError(
            f"Unknown output format: {output_format}",
            [f"Use one of: {', '.join(OUTPUT_FORMATS)}"],
        )
    return formatter(contributions, with_links)


def output_filename(from_date: datetime, to_date: datetime, output_format: str) -> str:
    """Return the default file name for file-based output formats."""
    return f"git-contributions-{from_date:%Y-%m-%d}-{to_date:%Y-%m-%d}.{output_format}"
