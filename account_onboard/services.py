"""
Services for account onboarding.
Lookup, Safe management, offline validation and the per-row reconciliation
driver. All vault traffic goes through a :class:`VaultClient`.
"""

from typing import Any, Dict, List, Mapping, Optional

from .csv_schema import normalize
from .diff_engine import diff
from .exceptions import (
    APIError, AccountNotFoundError, AmbiguousMatchError, AuthenticationError,
    ConfigurationError, ContainerCreateError, ContainerMissingError,
    DuplicateAccountError, OnboardingError, RemoteWriteError, TransportError,
    ValidationError, format_error_message
)
from .logger import StructuredLogger, get_logger
from .models import (
    Bypass, DesiredAccount, OperationMode, RemoteAccount, RunOptions,
    RunSummary, SafeMember, SafeTemplate, SearchMode, SecretType,
    ValidationResult, identity_key
)
from .permissions import is_default_member, translate_permissions
from .recorder import OutcomeRecorder
from .vault_client import MEMBER_EXISTS_CODES, VaultClient

# fields of a Safe the vault assigns itself; never sent when cloning a template
SERVER_OWNED_SAFE_FIELDS = frozenset({
    "safeUrlId", "safeNumber", "creator", "creationTime",
    "lastModificationTime", "isExpiredMember", "accounts",
})


class LookupService:
    """Finds the one remote account a row refers to."""

    def __init__(self, client: VaultClient, options: RunOptions):
        self.client = client
        self.options = options

    def find_account(self, safe_name: str, criteria: DesiredAccount,
                     search_mode: Optional[SearchMode] = None) -> Optional[RemoteAccount]:
        """Return the matching account, or None.

        Raises:
            AmbiguousMatchError: more than one account survives filtering.
            ValidationError: a name-based search mode was asked for without a name.
        """
        bypass = self.options.bypass_account_search
        if bypass is Bypass.ASSUME_MISSING:
            return None
        if bypass is Bypass.ASSUME_EXISTS:
            return RemoteAccount(id=None)

        mode = search_mode or self.options.search_mode
        if mode in (SearchMode.WIDE, SearchMode.NARROW):
            if not criteria.name:
                raise ValidationError(f"Search mode '{mode.value}' needs an account name", field="name")
            search = criteria.name if mode is SearchMode.WIDE else None
            candidates = self.client.search_accounts(safe_name, search)
            matches = [c for c in candidates if c.get('name') == criteria.name]
        else:
            terms = " ".join(t for t in (criteria.user_name, criteria.address) if t)
            candidates = self.client.search_accounts(safe_name, terms or None)
            matches = [c for c in candidates if self._matches(c, criteria)]

        if len(matches) > 1:
            ids = [str(m.get('id')) for m in matches]
            raise AmbiguousMatchError(
                f"{len(matches)} accounts in Safe '{safe_name}' match '{criteria}' ({', '.join(ids)})",
                candidate_ids=ids,
            )
        return RemoteAccount.from_api(matches[0]) if matches else None

    def _matches(self, candidate: Mapping[str, Any], criteria: DesiredAccount) -> bool:
        checks = [
            ('userName', criteria.user_name),
            ('address', criteria.address),
            ('platformId', criteria.platform_id),
        ]
        if criteria.name and not self.options.ignore_account_name:
            checks.append(('name', criteria.name))
        return all(candidate.get(attr) == value for attr, value in checks if value)


class SafeService:
    """Ensures Safes exist, cloning the template Safe when one is configured."""

    def __init__(self, client: VaultClient, options: RunOptions, logger: Optional[StructuredLogger] = None):
        self.client = client
        self.options = options
        self.logger = logger or get_logger()
        self.template: Optional[SafeTemplate] = None

    def prepare_template(self) -> Optional[SafeTemplate]:
        """Load the template Safe and its members once, before any row.

        Raises:
            ConfigurationError: the template cannot be read. The run must stop.
        """
        name = self.options.template_safe
        if not name:
            return None
        try:
            body = self.client.get_safe(name)
            if body is None:
                raise ConfigurationError(f"Template Safe '{name}' does not exist")
            members = [
                SafeMember.from_api(m) for m in self.client.list_safe_members(name)
                if not is_default_member(m.get('memberName', ''))
            ]
        except (APIError, TransportError) as e:
            raise ConfigurationError(f"Could not prepare template Safe '{name}': {e}") from e

        self.template = SafeTemplate(name=name, body=body, members=members)
        self.logger.info("template_prepared", {"safe": name, "members": len(members)})
        return self.template

    def ensure_safe(self, safe_name: str, create: bool = True) -> bool:
        """Make sure the Safe exists. Returns True if it already existed.

        Raises:
            ContainerMissingError: the Safe is missing and may not be created.
            ContainerCreateError: the vault rejected the creation.
        """
        if self.options.bypass_safe_search:
            return True
        if self.client.get_safe(safe_name) is not None:
            return True
        if not (create and self.options.create_safes):
            raise ContainerMissingError(f"Safe '{safe_name}' does not exist and Safe creation is disabled")
        self.create_safe(safe_name)
        return False

    def create_safe(self, safe_name: str) -> None:
        body = self._safe_body(safe_name)
        try:
            self.client.add_safe(body)
        except APIError as e:
            raise ContainerCreateError(f"Failed to create Safe '{safe_name}': {e}",
                                       {"error_code": e.error_code}) from e
        self.logger.info("safe_created", {
            "safe": safe_name,
            "template": self.template.name if self.template else None,
        })
        if self.template:
            self._grant_template_members(safe_name)

    def _safe_body(self, safe_name: str) -> Dict[str, Any]:
        if self.template:
            body = {
                k: v for k, v in self.template.body.items()
                if k not in SERVER_OWNED_SAFE_FIELDS and v is not None
            }
        else:
            body = {'description': ""}
        body['safeName'] = safe_name
        if self.options.cpm_name is not None:
            body['managingCPM'] = self.options.cpm_name
        if self.options.retention_versions is not None:
            body.pop('numberOfDaysRetention', None)
            body['numberOfVersionsRetention'] = self.options.retention_versions
        elif self.options.retention_days is not None:
            body.pop('numberOfVersionsRetention', None)
            body['numberOfDaysRetention'] = self.options.retention_days
        return body

    def _grant_template_members(self, safe_name: str) -> int:
        """Add every template member to the new Safe. Failures are logged, not raised."""
        granted = 0
        for member in self.template.members:
            grant = SafeMember(
                member_name=member.member_name,
                permissions=translate_permissions(member.permissions),
                member_type=member.member_type,
                search_in=member.search_in,
            )
            try:
                self.client.add_safe_member(safe_name, grant.to_dict())
            except APIError as e:
                if e.error_code in MEMBER_EXISTS_CODES:
                    granted += 1
                    continue
                self.logger.warning("safe_member_failed", {
                    "safe": safe_name, "member": member.member_name, "error": str(e),
                })
                continue
            except TransportError as e:
                self.logger.warning("safe_member_failed", {
                    "safe": safe_name, "member": member.member_name, "error": str(e),
                })
                continue
            granted += 1
            self.logger.info("safe_member_added", {"safe": safe_name, "member": member.member_name})
        return granted


class ValidationService:
    """Offline checks of an input file: every row must normalize."""

    def validate_rows(self, rows: List[Mapping[str, Any]], mode: OperationMode) -> ValidationResult:
        result = ValidationResult(is_valid=True)
        seen: Dict[str, int] = {}

        for index, row in enumerate(rows):
            line = index + 2  # header is line 1
            try:
                normalize(row, mode)
            except ValidationError as e:
                result.add_error(f"Line {line}: {e}")
                continue
            key = identity_key(row)
            if key in seen:
                result.add_warning(f"Line {line}: '{key}' already appears on line {seen[key]}")
            else:
                seen[key] = line

        result.metadata['row_count'] = len(rows)
        if not rows:
            result.add_warning("CSV file has no data rows")
        return result


class ProvisioningService:
    """Reconciles every row of a batch against the vault, one row at a time."""

    def __init__(self, client: VaultClient, options: RunOptions, recorder: OutcomeRecorder,
                 logger: Optional[StructuredLogger] = None, lookup: Optional[LookupService] = None,
                 safes: Optional[SafeService] = None):
        self.client = client
        self.options = options
        self.recorder = recorder
        self.logger = logger or get_logger()
        self.lookup = lookup or LookupService(client, options)
        self.safes = safes or SafeService(client, options, self.logger)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, rows: List[Mapping[str, Any]], mode: OperationMode) -> RunSummary:
        """Process the whole batch. Only authentication errors escape."""
        self.logger.info("run_start", {
            "mode": mode.value,
            "rows": len(rows),
            "search_mode": self.options.search_mode.value,
        })

        for index, row in enumerate(rows):
            line = index + 2
            self.recorder.record_attempt()
            try:
                message = self.process_row(row, mode, line)
            except AuthenticationError:
                raise
            except OnboardingError as e:
                self.recorder.record_bad(row, str(e), line)
                continue
            except Exception as e:
                self.recorder.record_bad(row, format_error_message(e), line)
                continue
            self.recorder.record_good(row, line, message)

        summary = self.recorder.summary()
        self.logger.log_run_summary(mode.value, summary.attempted, summary.succeeded, summary.bad_file)
        return summary

    def process_row(self, row: Mapping[str, Any], mode: OperationMode, line: Optional[int] = None) -> str:
        """Reconcile one row. Returns a success message, raises on failure."""
        account = normalize(row, mode)
        creates_missing = mode is OperationMode.CREATE or (
            mode is OperationMode.UPDATE and self.options.create_on_update)

        existed = self.safes.ensure_safe(account.safe_name, create=creates_missing)
        # a Safe created just now cannot hold the account yet
        existing = self.lookup.find_account(account.safe_name, account) if existed else None

        if existing is None:
            if creates_missing:
                return self._create(account, line)
            raise AccountNotFoundError(f"Account '{account}' does not exist in Safe '{account.safe_name}'")

        if mode is OperationMode.CREATE:
            if self.options.skip_duplicates:
                self.logger.log_account_operation("skipped", str(account), line, reason="already exists")
                return "Account already exists"
            if not self.options.allow_duplicates:
                raise DuplicateAccountError(
                    f"Account '{account}' already exists in Safe '{account.safe_name}'")
            return self._create(account, line)

        if existing.id is None:
            raise ValidationError("Account search was bypassed, no account id to address", field="id")
        if mode is OperationMode.DELETE:
            return self._delete(account, existing, line)
        return self._update(account, existing, line)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _create(self, account: DesiredAccount, line: Optional[int]) -> str:
        try:
            created = self.client.add_account(account.to_create_body())
        except APIError as e:
            raise RemoteWriteError(f"Failed to create account '{account}': {e}",
                                   {"error_code": e.error_code}) from e
        self.logger.log_account_operation("created", str(account), line,
                                          safe=account.safe_name, id=created.get('id'))
        return "Account created"

    def _delete(self, account: DesiredAccount, existing: RemoteAccount, line: Optional[int]) -> str:
        try:
            self.client.delete_account(existing.id)
        except APIError as e:
            raise RemoteWriteError(f"Failed to delete account '{account}': {e}",
                                   {"error_code": e.error_code}) from e
        self.logger.log_account_operation("deleted", str(account), line, id=existing.id)
        return "Account deleted"

    def _update(self, account: DesiredAccount, existing: RemoteAccount, line: Optional[int]) -> str:
        operations = diff(account, existing)
        if operations:
            try:
                self.client.patch_account(existing.id, [op.to_dict() for op in operations])
            except APIError as e:
                raise RemoteWriteError(f"Failed to update account '{account}': {e}",
                                       {"error_code": e.error_code}) from e
            self.logger.log_account_operation("updated", str(account), line, id=existing.id,
                                              paths=[str(op) for op in operations])

        if account.secret:
            if account.secret_type is SecretType.KEY:
                prefix = "Account properties updated, but the" if operations else "The"
                raise ValidationError(f"{prefix} secret of type 'key' cannot be updated", field="key")
            try:
                self.client.update_password(existing.id, account.secret)
            except APIError as e:
                raise RemoteWriteError(f"Failed to update password of '{account}': {e}",
                                       {"error_code": e.error_code}) from e
            self.logger.log_account_operation("password_updated", str(account), line, id=existing.id)
            return "Account updated" if operations else "Password updated"

        if not operations:
            self.logger.log_account_operation("unchanged", str(account), line, id=existing.id)
            return "No changes detected"
        return "Account updated"
