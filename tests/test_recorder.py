"""Tests for outcome recording and the CSV sinks."""

import csv

import pytest
from unittest.mock import MagicMock

from account_onboard.csv_schema import normalize
from account_onboard.exceptions import CSVError
from account_onboard.file_adapter import FileAdapter, create_sinks
from account_onboard.models import OperationMode, Outcome
from account_onboard.recorder import OutcomeRecorder, RunContext, scrub_secrets

HEADERS = ["Safe", "UserName", "Address", "PlatformID", "Password"]


def read_rows(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


@pytest.fixture
def recorder(tmp_path):
    sinks = create_sinks(tmp_path / "accounts.csv", tmp_path, HEADERS)
    return OutcomeRecorder(RunContext(), MagicMock(), good_sink=sinks["good"], bad_sink=sinks["bad"])


def row(user="u1", password="pw"):
    return {"Safe": "S1", "UserName": user, "Address": "a1", "PlatformID": "P1", "Password": password}


class TestOutcomeRecorder:
    """Good/bad classification."""

    def test_good_row_is_scrubbed(self, recorder, tmp_path):
        recorder.record_attempt()
        record = recorder.record_good(row(), line_number=2, message="Account created")

        assert record.outcome is Outcome.GOOD
        written = read_rows(tmp_path / "accounts.good.csv")
        assert written == [{"Safe": "S1", "UserName": "u1", "Address": "a1", "PlatformID": "P1", "Password": ""}]

    def test_bad_row_keeps_secret_and_message(self, recorder, tmp_path):
        recorder.record_attempt()
        recorder.record_bad(row(), "Safe 'S1' does not exist", line_number=2)

        written = read_rows(tmp_path / "accounts.bad.csv")
        assert len(written) == 1
        assert written[0]["Password"] == "pw"
        assert written[0]["ErrorMessage"] == "Safe 'S1' does not exist"

    def test_bad_rows_deduplicated_by_identity(self, recorder, tmp_path):
        for _ in range(2):
            recorder.record_attempt()
            recorder.record_bad(row(), "failed")
        recorder.record_attempt()
        recorder.record_bad(row(user="u2"), "failed")

        written = read_rows(tmp_path / "accounts.bad.csv")
        assert [r["UserName"] for r in written] == ["u1", "u2"]
        recorder.logger.warning.assert_called_once()
        assert recorder.logger.warning.call_args[0][0] == "duplicate_failure"

    def test_summary_counts(self, recorder, tmp_path):
        recorder.record_attempt()
        recorder.record_good(row())
        recorder.record_attempt()
        recorder.record_bad(row(user="u2"), "failed")

        summary = recorder.summary()
        assert (summary.attempted, summary.succeeded, summary.failed) == (2, 1, 1)
        assert not summary.success
        assert summary.bad_file == str(tmp_path / "accounts.bad.csv")

    def test_summary_without_failures_has_no_bad_file(self, recorder):
        recorder.record_attempt()
        recorder.record_good(row())
        summary = recorder.summary()
        assert summary.success
        assert summary.bad_file is None

    def test_scrub_secrets_is_case_insensitive(self):
        scrubbed = scrub_secrets({"PASSWORD": "a", "Key": "b", "sshKey": "c", "Safe": "S1"})
        assert scrubbed == {"PASSWORD": "", "Key": "", "sshKey": "", "Safe": "S1"}


class TestFileAdapter:
    """CSV input."""

    def test_read_strips_headers_and_bom(self, tmp_path):
        path = tmp_path / "in.csv"
        path.write_text("\ufeff Safe ,UserName\nS1,u1\n", encoding="utf-8")
        data = FileAdapter().read_csv(path)
        assert data.headers == ["Safe", "UserName"]
        assert data.rows == [{"Safe": "S1", "UserName": "u1"}]

    def test_missing_file(self, tmp_path):
        with pytest.raises(CSVError):
            FileAdapter().read_csv(tmp_path / "missing.csv")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("", encoding="utf-8")
        with pytest.raises(CSVError):
            FileAdapter().read_csv(path)


class TestBadFileRerun:
    """A bad file fed back in as input."""

    def test_error_column_is_not_an_account_property(self, recorder, tmp_path):
        recorder.record_attempt()
        recorder.record_bad(row(), "Platform not found", line_number=2)

        data = FileAdapter().read_csv(tmp_path / "accounts.bad.csv")
        account = normalize(data.rows[0], OperationMode.CREATE)

        assert account.extension_properties == {}
        assert "platformAccountProperties" not in account.to_create_body()
        assert account.secret == "pw"

    def test_rerun_sinks_keep_one_error_column(self, recorder, tmp_path):
        recorder.record_attempt()
        recorder.record_bad(row(), "Platform not found")
        data = FileAdapter().read_csv(tmp_path / "accounts.bad.csv")

        rerun_dir = tmp_path / "rerun"
        sinks = create_sinks(tmp_path / "accounts.bad.csv", rerun_dir, data.headers)
        rerun = OutcomeRecorder(RunContext(), MagicMock(), good_sink=sinks["good"], bad_sink=sinks["bad"])
        rerun.record_attempt()
        rerun.record_bad(data.rows[0], "Safe 'S1' does not exist")
        rerun.record_attempt()
        rerun.record_good(dict(data.rows[0], UserName="u2"))

        with open(rerun_dir / "accounts.bad.bad.csv", newline="", encoding="utf-8") as f:
            header = next(csv.reader(f))
        assert header == HEADERS + ["ErrorMessage"]
        assert read_rows(rerun_dir / "accounts.bad.bad.csv")[0]["ErrorMessage"] == "Safe 'S1' does not exist"
        assert "ErrorMessage" not in read_rows(rerun_dir / "accounts.bad.good.csv")[0]
