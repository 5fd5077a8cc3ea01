"""
Outcome recording for a run.

Good rows go to the good sink with their secrets blanked. Bad rows go to the
bad sink once per identity key, so the remediation file never lists the same
account twice.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Set

from .file_adapter import CsvSink, ERROR_COLUMN
from .logger import StructuredLogger
from .models import Outcome, OutcomeRecord, RunSummary, identity_key

SECRET_COLUMNS = frozenset({"password", "key", "sshkey"})


@dataclass
class RunContext:
    """Cross-row state of one run."""
    attempted: int = 0
    succeeded: int = 0
    failed_keys: Set[str] = field(default_factory=set)

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded


def scrub_secrets(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``row`` with every secret column emptied."""
    return {
        k: ("" if k is not None and k.strip().lower() in SECRET_COLUMNS else v)
        for k, v in row.items()
    }


class OutcomeRecorder:
    """Classifies processed rows and writes them to the good/bad sinks."""

    def __init__(self, context: RunContext, logger: StructuredLogger,
                 good_sink: Optional[CsvSink] = None, bad_sink: Optional[CsvSink] = None):
        self.context = context
        self.logger = logger
        self.good_sink = good_sink
        self.bad_sink = bad_sink

    def record_attempt(self) -> None:
        self.context.attempted += 1

    def record_good(self, row: Mapping[str, Any], line_number: Optional[int] = None,
                    message: str = "") -> OutcomeRecord:
        self.context.succeeded += 1
        if self.good_sink is not None:
            self.good_sink.append(scrub_secrets(row))
        return OutcomeRecord(Outcome.GOOD, identity_key(row), message, line_number)

    def record_bad(self, row: Mapping[str, Any], message: str = "",
                   line_number: Optional[int] = None) -> OutcomeRecord:
        key = identity_key(row)
        record = OutcomeRecord(Outcome.BAD, key, message, line_number)
        if key in self.context.failed_keys:
            self.logger.warning("duplicate_failure", {"account": key, "line": line_number, "error": message})
            return record

        self.context.failed_keys.add(key)
        self.logger.error("record_failed", {"account": key, "line": line_number, "error": message})
        if self.bad_sink is not None:
            bad_row = dict(row)
            bad_row[ERROR_COLUMN] = message
            self.bad_sink.append(bad_row)
        return record

    def summary(self) -> RunSummary:
        return RunSummary(
            attempted=self.context.attempted,
            succeeded=self.context.succeeded,
            failed=self.context.failed,
            bad_file=str(self.bad_sink.file_path) if self.bad_sink and self.bad_sink.rows_written else None,
            good_file=str(self.good_sink.file_path) if self.good_sink and self.good_sink.rows_written else None,
        )
