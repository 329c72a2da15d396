# application/services/report_writer.py

from __future__ import annotations
import json
from pathlib import Path
from typing import Any

from domain.models import RunSummary

def build_report_entries(summary: RunSummary) -> list[dict[str, Any]]:
    # solo mensajes con al menos una imagen guardada
    return [
        {"subject": o.subject, "images": list(o.saved)}
        for o in summary.outcomes
        if o.saved
    ]

def write_report(path: Path, entries: list[dict[str, Any]]) -> None:
    body = json.dumps(entries, ensure_ascii=False, indent=2)
    Path(path).write_text(body + "\n", encoding="utf-8")
