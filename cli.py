#!/usr/bin/env python3
"""
Account onboarding CLI.
Creates, updates or deletes vault accounts from a CSV file.
"""

import uuid
from pathlib import Path
from typing import Optional

import typer

from account_onboard import config
from account_onboard.exceptions import (
    AuthenticationError, CSVError, ConfigurationError, OnboardingError, TransportError
)
from account_onboard.file_adapter import CSVData, FileAdapter, create_sinks
from account_onboard.logger import init_logger
from account_onboard.models import Bypass, OperationMode, RunOptions, SearchMode
from account_onboard.recorder import OutcomeRecorder, RunContext
from account_onboard.services import ProvisioningService, SafeService, ValidationService
from account_onboard.vault_client import VaultClient

app = typer.Typer(name="account-onboard", help="Onboard accounts into the vault from a CSV file.")

TEMPLATE_COLUMNS = [
    "safe", "name", "username", "address", "platformid", "password", "key",
    "enableautomgmt", "manualmgmtreason", "remotemachineaddresses",
    "restrictmachineaccesstolist",
]

EXIT_FAILED_RECORDS = 1
EXIT_FATAL = 2


@app.command()
def template(output: Path = typer.Argument(..., help="Where to write the header-only CSV")):
    """Write an empty CSV with the reserved columns."""
    FileAdapter().write_csv(output, CSVData(headers=TEMPLATE_COLUMNS, rows=[]))
    typer.echo(f"✓ Template written to {output}")


@app.command()
def validate(
    csv_file: Path = typer.Argument(..., help="Input CSV"),
    mode: OperationMode = typer.Option(OperationMode.CREATE, "--mode", "-m", case_sensitive=False),
):
    """Check every row offline, without contacting the vault."""
    try:
        data = FileAdapter().read_csv(csv_file)
    except CSVError as e:
        typer.echo(f"✗ {e}", err=True)
        raise typer.Exit(code=EXIT_FAILED_RECORDS)

    result = ValidationService().validate_rows(data.rows, mode)
    if result.is_valid:
        typer.echo(f"✓ CSV validation passed ({result.metadata.get('row_count', 0)} rows)")
    else:
        typer.echo("✗ CSV validation failed")
        for error in result.errors:
            typer.echo(f"  Error: {error}")
    for warning in result.warnings:
        typer.echo(f"  Warning: {warning}")

    if not result.is_valid:
        raise typer.Exit(code=EXIT_FAILED_RECORDS)


@app.command()
def apply(
    csv_file: Path = typer.Argument(..., help="Input CSV"),
    mode: OperationMode = typer.Option(OperationMode.CREATE, "--mode", "-m", case_sensitive=False),
    url: str = typer.Option(config.PVWA_URL, "--url", help="PVWA API base URL"),
    user: str = typer.Option(config.VAULT_USER, "--user", help="Vault user for logon"),
    auth_type: str = typer.Option(config.AUTH_TYPE, "--auth-type", help="cyberark, ldap or radius"),
    logon_token: Optional[str] = typer.Option(None, "--logon-token", help="Existing session token"),
    timeout: int = typer.Option(config.REQUEST_TIMEOUT, "--timeout", help="Per-request timeout (seconds)"),
    verify_tls: bool = typer.Option(config.VERIFY_TLS, "--verify-tls/--no-verify-tls",
                                    help="Check the PVWA TLS certificate"),
    search_mode: SearchMode = typer.Option(SearchMode.ATTRIBUTE, "--search-mode", case_sensitive=False),
    ignore_account_name: bool = typer.Option(False, "--ignore-account-name"),
    bypass_account_search: Bypass = typer.Option(Bypass.NONE, "--bypass-account-search",
                                                 case_sensitive=False),
    bypass_safe_search: bool = typer.Option(False, "--bypass-safe-search"),
    create_safes: bool = typer.Option(True, "--create-safes/--no-create-safes"),
    template_safe: Optional[str] = typer.Option(None, "--template-safe",
                                                help="Safe whose settings and members new Safes copy"),
    cpm_name: Optional[str] = typer.Option(None, "--cpm-name"),
    retention_versions: Optional[int] = typer.Option(None, "--retention-versions"),
    retention_days: Optional[int] = typer.Option(None, "--retention-days"),
    create_on_update: bool = typer.Option(False, "--create-on-update"),
    skip_duplicates: bool = typer.Option(False, "--skip-duplicates"),
    allow_duplicates: bool = typer.Option(False, "--allow-duplicates"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir",
                                              help="Directory for the good/bad CSVs (default: the run directory)"),
    run_id: Optional[str] = typer.Option(None, "--run-id"),
):
    """Reconcile every row of the CSV against the vault."""
    options = RunOptions(
        search_mode=search_mode,
        ignore_account_name=ignore_account_name,
        bypass_account_search=bypass_account_search,
        bypass_safe_search=bypass_safe_search,
        create_safes=create_safes,
        template_safe=template_safe,
        cpm_name=cpm_name,
        retention_versions=retention_versions,
        retention_days=retention_days,
        create_on_update=create_on_update,
        skip_duplicates=skip_duplicates,
        allow_duplicates=allow_duplicates,
    )
    try:
        options.validate()
        if not url:
            raise ConfigurationError("No PVWA URL given (--url or ONBOARD_PVWA_URL)")
        data = FileAdapter().read_csv(csv_file)
    except OnboardingError as e:
        typer.echo(f"✗ {e}", err=True)
        raise typer.Exit(code=EXIT_FATAL)

    logger = init_logger(run_id=run_id or str(uuid.uuid4())[:8])
    sinks = create_sinks(csv_file, output_dir or logger.log_dir, data.headers)
    recorder = OutcomeRecorder(RunContext(), logger, good_sink=sinks['good'], bad_sink=sinks['bad'])

    client = VaultClient(url, token=logon_token, timeout=timeout, verify=verify_tls)
    try:
        if not logon_token:
            if not user:
                raise ConfigurationError("No vault user given (--user or ONBOARD_USER)")
            password = config.VAULT_PASSWORD or typer.prompt("Password", hide_input=True)
            client.logon(user, password, auth_type)

        safes = SafeService(client, options, logger)
        safes.prepare_template()
        service = ProvisioningService(client, options, recorder, logger, safes=safes)
        summary = service.process(data.rows, mode)
    except (AuthenticationError, ConfigurationError, TransportError) as e:
        logger.error("run_aborted", {"error": str(e)})
        typer.echo(f"✗ {e}", err=True)
        raise typer.Exit(code=EXIT_FATAL)
    finally:
        try:
            client.logoff()
        except OnboardingError as e:
            logger.warning("logoff_failed", {"error": str(e)})

    typer.echo(f"{summary.succeeded} / {summary.attempted} accounts processed successfully")
    if summary.bad_file:
        typer.echo(f"  Failed rows written to {summary.bad_file}")
    if not summary.success:
        raise typer.Exit(code=EXIT_FAILED_RECORDS)
    typer.echo("✓ Run completed")


if __name__ == "__main__":
    app()
