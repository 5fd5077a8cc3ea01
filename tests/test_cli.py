from typer.testing import CliRunner
from unittest.mock import patch
import csv
import inspect

import pytest

from cli import app, apply
from account_onboard import config
from account_onboard.exceptions import AuthenticationError, TransportError
from account_onboard.models import OperationMode, RunSummary

runner = CliRunner()

CSV_TEXT = "Safe,UserName,Address,PlatformID,Password\nS1,u1,a1,P1,pw\n"


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "accounts.csv"
    path.write_text(CSV_TEXT, encoding="utf-8")
    return path


def test_app_runs():
    """Test that the CLI runs without crashing."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "apply" in result.stdout
    assert "validate" in result.stdout


def test_template_command(tmp_path):
    """Test template writes the reserved header."""
    output = tmp_path / "template.csv"
    result = runner.invoke(app, ["template", str(output)])
    assert result.exit_code == 0
    assert "Template written" in result.stdout
    with open(output, newline="", encoding="utf-8") as f:
        header = next(csv.reader(f))
    assert header[:5] == ["safe", "name", "username", "address", "platformid"]


def test_validate_command_success(csv_file):
    """Test validate command with a valid file."""
    result = runner.invoke(app, ["validate", str(csv_file)])
    assert result.exit_code == 0
    assert "✓ CSV validation passed" in result.stdout


def test_validate_command_with_errors(tmp_path):
    """Test validate command reports line-numbered errors."""
    path = tmp_path / "bad.csv"
    path.write_text("Safe,UserName,Address,PlatformID\nS1,u1,a1,P1\n,u2,a2,P1\n", encoding="utf-8")
    result = runner.invoke(app, ["validate", str(path), "--mode", "create"])
    assert result.exit_code == 1
    assert "✗ CSV validation failed" in result.stdout
    assert "Line 3: Safe name is required" in result.stdout


def test_validate_missing_file(tmp_path):
    result = runner.invoke(app, ["validate", str(tmp_path / "missing.csv")])
    assert result.exit_code == 1


@patch("cli.init_logger")
@patch("cli.SafeService")
@patch("cli.ProvisioningService")
@patch("cli.VaultClient")
def test_apply_command_success(mock_client, mock_provisioning, mock_safes, mock_logger, csv_file):
    """Test apply logs on, processes rows and logs off."""
    mock_provisioning.return_value.process.return_value = RunSummary(attempted=1, succeeded=1, failed=0)

    with patch("account_onboard.config.VAULT_PASSWORD", ""):
        result = runner.invoke(
            app,
            ["apply", str(csv_file), "--mode", "update", "--url", "https://pvwa/API", "--user", "admin"],
            input="secret\n",
        )

    assert result.exit_code == 0
    assert "1 / 1 accounts processed successfully" in result.stdout
    mock_client.return_value.logon.assert_called_once_with("admin", "secret", "cyberark")
    mock_client.return_value.logoff.assert_called_once()
    mock_safes.return_value.prepare_template.assert_called_once()
    rows, mode = mock_provisioning.return_value.process.call_args[0]
    assert rows == [{"Safe": "S1", "UserName": "u1", "Address": "a1", "PlatformID": "P1", "Password": "pw"}]
    assert mode is OperationMode.UPDATE


@patch("cli.init_logger")
@patch("cli.SafeService")
@patch("cli.ProvisioningService")
@patch("cli.VaultClient")
def test_apply_with_failed_records(mock_client, mock_provisioning, mock_safes, mock_logger, csv_file):
    """Test apply exits 1 when any record failed."""
    mock_provisioning.return_value.process.return_value = RunSummary(
        attempted=2, succeeded=1, failed=1, bad_file="accounts.bad.csv")

    result = runner.invoke(
        app, ["apply", str(csv_file), "--url", "https://pvwa/API", "--logon-token", "tok"])

    assert result.exit_code == 1
    assert "1 / 2 accounts processed successfully" in result.stdout
    assert "accounts.bad.csv" in result.stdout
    mock_client.assert_called_once_with("https://pvwa/API", token="tok", timeout=60, verify=True)
    mock_client.return_value.logon.assert_not_called()


@patch("cli.init_logger")
@patch("cli.ProvisioningService")
@patch("cli.VaultClient")
def test_apply_authentication_failure(mock_client, mock_provisioning, mock_logger, csv_file):
    """Test apply exits 2 when logon fails and still releases the client."""
    mock_client.return_value.logon.side_effect = AuthenticationError("Logon failed")

    with patch("account_onboard.config.VAULT_PASSWORD", "secret"):
        result = runner.invoke(
            app, ["apply", str(csv_file), "--url", "https://pvwa/API", "--user", "admin"])

    assert result.exit_code == 2
    mock_provisioning.return_value.process.assert_not_called()
    mock_client.return_value.logoff.assert_called_once()


@patch("cli.init_logger")
@patch("cli.ProvisioningService")
@patch("cli.VaultClient")
def test_apply_unreachable_vault_at_logon(mock_client, mock_provisioning, mock_logger, csv_file):
    """Test apply exits 2 when the vault cannot be reached for logon."""
    mock_client.return_value.logon.side_effect = TransportError("Request failed: POST auth/cyberark/Logon")

    with patch("account_onboard.config.VAULT_PASSWORD", "secret"):
        result = runner.invoke(
            app, ["apply", str(csv_file), "--url", "https://pvwa/API", "--user", "admin"])

    assert result.exit_code == 2
    assert not isinstance(result.exception, TransportError)
    mock_provisioning.return_value.process.assert_not_called()
    mock_logger.return_value.error.assert_called_once()
    assert mock_logger.return_value.error.call_args[0][0] == "run_aborted"
    mock_client.return_value.logoff.assert_called_once()


@patch("cli.init_logger")
@patch("cli.ProvisioningService")
@patch("cli.VaultClient")
def test_apply_no_verify_tls(mock_client, mock_provisioning, mock_logger, csv_file):
    """Test --no-verify-tls reaches the client."""
    mock_provisioning.return_value.process.return_value = RunSummary(attempted=1, succeeded=1, failed=0)

    result = runner.invoke(app, [
        "apply", str(csv_file), "--url", "https://pvwa/API", "--logon-token", "tok", "--no-verify-tls",
    ])

    assert result.exit_code == 0
    assert mock_client.call_args[1]["verify"] is False


def test_verify_tls_defaults_to_environment():
    default = inspect.signature(apply).parameters["verify_tls"].default
    assert default.default is config.VERIFY_TLS


def test_apply_rejects_conflicting_options(csv_file):
    result = runner.invoke(app, [
        "apply", str(csv_file), "--url", "https://pvwa/API",
        "--skip-duplicates", "--allow-duplicates",
    ])
    assert result.exit_code == 2


def test_apply_requires_url(csv_file):
    result = runner.invoke(app, ["apply", str(csv_file), "--url", ""])
    assert result.exit_code == 2
