"""
Models for account onboarding.
Plain, immutable-where-possible data structures shared by the services.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Mapping, Tuple
from enum import Enum

from .config import DEFAULT_MANUAL_REASON
from .exceptions import ConfigurationError


class OperationMode(Enum):
    """What the batch does to each row's account."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SecretType(Enum):
    """Secret kinds the vault stores on an account."""
    PASSWORD = "password"
    KEY = "key"


class SearchMode(Enum):
    """How an existing account is looked up."""
    WIDE = "wide"
    NARROW = "narrow"
    ATTRIBUTE = "attribute"


class Bypass(Enum):
    """Caller-asserted existence that skips a remote search."""
    NONE = "none"
    ASSUME_MISSING = "assume_missing"
    ASSUME_EXISTS = "assume_exists"


class PatchOp(Enum):
    """JSON-patch verbs accepted by the account PATCH endpoint."""
    REPLACE = "replace"
    ADD = "add"
    REMOVE = "remove"


class Outcome(Enum):
    """Terminal state of one processed row."""
    GOOD = "good"
    BAD = "bad"


def get_column(row: Mapping[str, Any], column: str) -> Optional[str]:
    """Case-insensitive column lookup. Returns None when the column is absent."""
    wanted = column.lower()
    for key, value in row.items():
        if key is not None and key.strip().lower() == wanted:
            return value if value is not None else ""
    return None


def identity_key(row: Mapping[str, Any]) -> str:
    """Derive the dedup key of a row: its name, else userName@address#platformId."""
    name = (get_column(row, "name") or "").strip()
    if name:
        return name
    user = (get_column(row, "username") or "").strip()
    address = (get_column(row, "address") or "").strip()
    platform = (get_column(row, "platformid") or "").strip()
    return f"{user}@{address}#{platform}"


@dataclass(frozen=True)
class DesiredAccount:
    """Canonical target state of one account, built from one input row."""
    safe_name: str
    user_name: str = ""
    address: str = ""
    platform_id: str = ""
    name: Optional[str] = None
    secret_type: SecretType = SecretType.PASSWORD
    secret: str = field(default="", repr=False)
    automatic_management_enabled: Optional[bool] = None
    manual_management_reason: str = ""
    extension_properties: Dict[str, str] = field(default_factory=dict)
    remote_machines: Optional[Tuple[str, ...]] = None
    access_restricted_to_remote_machines: Optional[str] = None

    def __str__(self) -> str:
        return self.name or f"{self.user_name}@{self.address}#{self.platform_id}"

    def to_row(self) -> Dict[str, str]:
        """Render back to an input row using the reserved column names."""
        row = {
            'safe': self.safe_name,
            'username': self.user_name,
            'address': self.address,
            'platformid': self.platform_id,
        }
        if self.name:
            row['name'] = self.name
        if self.secret_type is SecretType.KEY:
            row['key'] = self.secret
        else:
            row['password'] = self.secret
        if self.automatic_management_enabled is not None:
            row['enableautomgmt'] = "true" if self.automatic_management_enabled else "false"
            if not self.automatic_management_enabled:
                row['manualmgmtreason'] = self.manual_management_reason
        if self.remote_machines is not None:
            row['remotemachineaddresses'] = ",".join(self.remote_machines)
        if self.access_restricted_to_remote_machines is not None:
            row['restrictmachineaccesstolist'] = self.access_restricted_to_remote_machines
        row.update(self.extension_properties)
        return row

    def to_create_body(self) -> Dict[str, Any]:
        """Build the JSON body for ``POST /accounts``."""
        body: Dict[str, Any] = {
            'address': self.address,
            'userName': self.user_name,
            'platformId': self.platform_id,
            'safeName': self.safe_name,
            'secretType': self.secret_type.value,
            'secret': self.secret,
        }
        if self.name:
            body['name'] = self.name
        if self.extension_properties:
            body['platformAccountProperties'] = dict(self.extension_properties)
        if self.automatic_management_enabled is not None:
            management: Dict[str, Any] = {'automaticManagementEnabled': self.automatic_management_enabled}
            if not self.automatic_management_enabled:
                management['manualManagementReason'] = self.manual_management_reason or DEFAULT_MANUAL_REASON
            body['secretManagement'] = management
        access: Dict[str, Any] = {}
        if self.remote_machines:
            access['remoteMachines'] = ";".join(self.remote_machines)
        if self.access_restricted_to_remote_machines:
            access['accessRestrictedToRemoteMachines'] = self.access_restricted_to_remote_machines == "true"
        if access:
            body['remoteMachinesAccess'] = access
        return body


@dataclass
class RemoteAccount:
    """An account as returned by the vault. ``id`` is None for a bypass placeholder."""
    id: Optional[str]
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> 'RemoteAccount':
        return cls(id=payload.get('id'), properties=dict(payload))

    def get(self, attribute: str, default: Any = None) -> Any:
        return self.properties.get(attribute, default)

    def __str__(self) -> str:
        return self.get('name') or self.id or "<unknown account>"


@dataclass(frozen=True)
class PatchOperation:
    """One entry of an account PATCH body."""
    op: PatchOp
    path: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the wire; ``remove`` carries no value."""
        entry: Dict[str, Any] = {'op': self.op.value, 'path': self.path}
        if self.op is not PatchOp.REMOVE:
            entry['value'] = self.value
        return entry

    def __str__(self) -> str:
        return f"{self.op.value} {self.path}"


@dataclass
class SafeMember:
    """A Safe member and its permission mapping."""
    member_name: str
    permissions: Dict[str, bool] = field(default_factory=dict)
    member_type: str = "User"
    search_in: str = "Vault"

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> 'SafeMember':
        return cls(
            member_name=payload.get('memberName', ''),
            permissions=dict(payload.get('permissions') or {}),
            member_type=payload.get('memberType', 'User'),
            search_in=payload.get('searchIn') or 'Vault',
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'memberName': self.member_name,
            'memberType': self.member_type,
            'searchIn': self.search_in,
            'permissions': self.permissions,
        }


@dataclass
class SafeTemplate:
    """Template Safe body and members copied onto newly created Safes."""
    name: str
    body: Dict[str, Any] = field(default_factory=dict)
    members: List[SafeMember] = field(default_factory=list)


@dataclass
class RunOptions:
    """Behaviour switches for one batch, resolved before any row is processed."""
    search_mode: SearchMode = SearchMode.ATTRIBUTE
    ignore_account_name: bool = False
    bypass_account_search: Bypass = Bypass.NONE
    bypass_safe_search: bool = False
    create_safes: bool = True
    template_safe: Optional[str] = None
    cpm_name: Optional[str] = None
    retention_versions: Optional[int] = None
    retention_days: Optional[int] = None
    create_on_update: bool = False
    skip_duplicates: bool = False
    allow_duplicates: bool = False

    def validate(self) -> None:
        """Reject contradictory switches."""
        if self.skip_duplicates and self.allow_duplicates:
            raise ConfigurationError("skip_duplicates and allow_duplicates are mutually exclusive")
        if self.retention_versions is not None and self.retention_days is not None:
            raise ConfigurationError("Set either retention_versions or retention_days, not both")


@dataclass
class OutcomeRecord:
    """Result of one processed row."""
    outcome: Outcome
    identity_key: str
    message: str = ""
    line_number: Optional[int] = None


@dataclass
class ValidationResult:
    """Result of an offline CSV validation."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_error(self, error: str) -> None:
        """Add an error."""
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, warning: str) -> None:
        """Add a warning."""
        self.warnings.append(warning)


@dataclass
class RunSummary:
    """Final counters of a batch."""
    attempted: int
    succeeded: int
    failed: int
    bad_file: Optional[str] = None
    good_file: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.failed == 0
