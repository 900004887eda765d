"""Export cached moderation outcomes to CSV or JSON."""

import csv
import json
from datetime import datetime

from .models import ActionRecord

FIELDNAMES = ["message_id", "action", "category", "confidence", "keyword", "recorded_at"]


def _as_row(rec: ActionRecord) -> dict:
    return {
        "message_id": rec.message_id,
        "action": rec.action,
        "category": rec.category or "",
        "confidence": rec.confidence,
        "keyword": rec.keyword or "",
        "recorded_at": datetime.fromtimestamp(rec.recorded_at).isoformat() if rec.recorded_at else "",
    }


def export_actions(records: list[ActionRecord], format: str, output_path: str) -> int:
    """Export action records to a file, newest first.

    Args:
        records: The cached records to export.
        format: Output format, either 'csv' or 'json'.
        output_path: Path to write the output file.

    Returns the number of records written.
    """
    rows = [_as_row(rec) for rec in sorted(records, key=lambda r: r.recorded_at, reverse=True)]

    if format == "csv":
        with open(output_path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=FIELDNAMES)
            writer.writeheader()
            writer.writerows(rows)
    elif format == "json":
        with open(output_path, "w") as f:
            json.dump(rows, f, indent=2)
    else:
        raise ValueError(f"Unsupported export format: {format}")

    return len(rows)
