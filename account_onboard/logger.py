"""
Structured logging for account onboarding runs.
Newline-delimited JSON (.jsonl), one entry per event, tagged with the run_id.
"""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict

from .config import RUNS_DIR


@dataclass
class LogEntry:
    """One line of the run log."""
    ts: str  # RFC3339 UTC timestamp
    run_id: str
    level: str  # info, warning, error
    event: str  # e.g. account_created, safe_created
    data: Optional[Dict[str, Any]] = None

    def to_json(self) -> str:
        """Convert to JSON string for .jsonl format."""
        return json.dumps(asdict(self), separators=(',', ':'), default=str)


class StructuredLogger:
    """
    Run logger:
    - Newline-delimited JSON (.jsonl) format
    - Keys: ts (RFC3339 UTC), run_id, level, event, data
    - Files named: onboard-YYYYMMDD.log.jsonl under <runs>/YYYY-MM-DD/
    """

    def __init__(self, log_dir: Optional[Path] = None, run_id: Optional[str] = None):
        self.run_id = run_id or str(uuid.uuid4())[:8]
        self.log_dir = log_dir or RUNS_DIR / datetime.now().strftime("%Y-%m-%d")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        log_filename = f"onboard-{datetime.now().strftime('%Y%m%d')}.log.jsonl"
        self.log_file = self.log_dir / log_filename

    def _log(self, level: str, event: str, data: Optional[Dict[str, Any]] = None):
        entry = LogEntry(
            ts=datetime.now(timezone.utc).isoformat(),
            run_id=self.run_id,
            level=level,
            event=event,
            data=data
        )
        with open(self.log_file, 'a', encoding='utf-8') as f:
            f.write(entry.to_json() + '\n')

    def info(self, event: str, data: Optional[Dict[str, Any]] = None):
        """Log info level event."""
        self._log("info", event, data)

    def warning(self, event: str, data: Optional[Dict[str, Any]] = None):
        """Log warning level event."""
        self._log("warning", event, data)

    def error(self, event: str, data: Optional[Dict[str, Any]] = None):
        """Log error level event."""
        self._log("error", event, data)

    def log_account_operation(self, operation: str, account: str, line_number: Optional[int] = None,
                              **kwargs: Any):
        """Log a write against an account. Never pass secrets in kwargs."""
        data: Dict[str, Any] = {"operation": operation, "account": account}
        if line_number is not None:
            data["line"] = line_number
        data.update(kwargs)
        self.info(f"account_{operation}", data)

    def log_run_summary(self, mode: str, attempted: int, succeeded: int, bad_file: Optional[str] = None):
        """Log the end-of-run counters."""
        self.info("run_complete", {
            "mode": mode,
            "attempted": attempted,
            "succeeded": succeeded,
            "failed": attempted - succeeded,
            "bad_file": bad_file,
        })


_logger: Optional[StructuredLogger] = None


def init_logger(run_id: Optional[str] = None, log_dir: Optional[Path] = None) -> StructuredLogger:
    """Initialize logger with specific configuration."""
    global _logger
    _logger = StructuredLogger(log_dir=log_dir, run_id=run_id)
    return _logger


def get_logger() -> StructuredLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = init_logger()
    return _logger
