"""ffa_calendar_etl.shared

Run-report support shared by the CLI and the harvest loop.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

REPORTS_DIR = Path("./artifacts/reports")


class SupportsToDict(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str | None],
    counters: SupportsToDict,
    reports_dir: Path = REPORTS_DIR,
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
