import re
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, field_validator

from .exceptions import ValidationError
from .file_adapter import ERROR_COLUMN
from .models import DesiredAccount, OperationMode, SecretType

RESERVED_COLUMNS = frozenset({
    "name", "username", "address", "safe", "platformid", "password", "key",
    "enableautomgmt", "manualmgmtreason", "groupname", "groupplatformid",
    "remotemachineaddresses", "restrictmachineaccesstolist", "sshkey",
})

CREATE_REQUIRED = ("username", "address", "platformid")

_LIST_SEPARATORS = re.compile(r"[,;]")


class AccountRow(BaseModel):
    safe: str = ""
    name: str = ""
    username: str = ""
    address: str = ""
    platformid: str = ""
    password: Optional[str] = None
    key: Optional[str] = None
    sshkey: Optional[str] = None
    enableautomgmt: str = ""
    manualmgmtreason: str = ""
    groupname: str = ""
    groupplatformid: str = ""
    remotemachineaddresses: Optional[str] = None
    restrictmachineaccesstolist: Optional[str] = None

    # platform-specific columns are accepted as extras
    model_config = {"extra": "allow"}

    @field_validator("*", mode="before")
    @classmethod
    def strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AccountRow":
        """Split a raw CSV row into reserved fields and extension columns."""
        data: Dict[str, Any] = {}
        for column, value in row.items():
            if column is None:
                # csv.DictReader puts cells beyond the header under None
                continue
            header = column.strip()
            if header.lower() == ERROR_COLUMN.lower():
                # left by a previous run in its bad file
                continue
            cell = value if isinstance(value, str) else ""
            if header.lower() in RESERVED_COLUMNS:
                data[header.lower()] = cell
            elif header:
                data[header] = cell.strip()
        return cls.model_validate(data)

    def extension_properties(self) -> Dict[str, str]:
        """Non-reserved columns with a value. Empty cells are dropped."""
        return {k: v for k, v in (self.model_extra or {}).items() if v}


def parse_lenient_bool(value: str) -> bool:
    """y/yes and n/no first, then true/false, anything else is False."""
    token = value.strip().lower()
    if token in ("y", "yes"):
        return True
    if token in ("n", "no"):
        return False
    return token == "true"


def _split_machines(value: str):
    return tuple(part.strip() for part in _LIST_SEPARATORS.split(value) if part.strip())


def normalize(row: Mapping[str, Any], mode: OperationMode) -> DesiredAccount:
    """Map one input row to a :class:`DesiredAccount`.

    Raises:
        ValidationError: the Safe is missing, or a create row lacks
            userName, address or platformId.
    """
    parsed = AccountRow.from_row(row)

    if not parsed.safe:
        raise ValidationError("Safe name is required", field="safe", value=parsed.safe)
    if mode is OperationMode.CREATE:
        for column in CREATE_REQUIRED:
            if not getattr(parsed, column):
                raise ValidationError(f"Column '{column}' is required to create an account", field=column)

    key_secret = parsed.key or parsed.sshkey
    if key_secret:
        secret_type, secret = SecretType.KEY, key_secret
    elif parsed.password is not None:
        secret_type, secret = SecretType.PASSWORD, parsed.password
    else:
        secret_type, secret = SecretType.PASSWORD, ""

    automatic = parse_lenient_bool(parsed.enableautomgmt) if parsed.enableautomgmt else None
    reason = parsed.manualmgmtreason if automatic is False else ""

    machines = None
    if parsed.remotemachineaddresses is not None:
        machines = _split_machines(parsed.remotemachineaddresses)

    restricted = parsed.restrictmachineaccesstolist
    if restricted:
        restricted = "true" if parse_lenient_bool(restricted) else "false"

    return DesiredAccount(
        safe_name=parsed.safe,
        user_name=parsed.username,
        address=parsed.address,
        platform_id=parsed.platformid,
        name=parsed.name or None,
        secret_type=secret_type,
        secret=secret,
        automatic_management_enabled=automatic,
        manual_management_reason=reason,
        extension_properties=parsed.extension_properties(),
        remote_machines=machines,
        access_restricted_to_remote_machines=restricted,
    )
