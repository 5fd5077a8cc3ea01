"""
Diff engine for account updates.

Turns a :class:`DesiredAccount` and the account the vault returned into the
ordered list of JSON-patch operations that converges the remote account.
Secrets are never part of the patch; they go through the password update
endpoint instead.
"""

from typing import Any, Dict, List, Optional, Set

from .config import DEFAULT_MANUAL_REASON
from .models import DesiredAccount, PatchOp, PatchOperation, RemoteAccount

# server-owned or addressed-by attributes the patch never touches
IMMUTABLE_ATTRIBUTES = frozenset({
    "id", "secret", "secretType", "safeName", "createdTime",
    "categoryModificationTime", "lastModifiedTime", "status",
})

SECRET_MANAGEMENT = "secretManagement"
AUTOMATIC_MANAGEMENT = "automaticManagementEnabled"
MANUAL_REASON = "manualManagementReason"
REMOTE_ACCESS = "remoteMachinesAccess"
REMOTE_MACHINES = "remoteMachines"
ACCESS_RESTRICTED = "accessRestrictedToRemoteMachines"
PLATFORM_PROPERTIES = "platformAccountProperties"

# handled after the walk, with their own add/remove rules
_SPECIAL_ATTRIBUTES = frozenset({REMOTE_ACCESS, PLATFORM_PROPERTIES})


def canonical(value: Any) -> str:
    """Comparison token: booleans as true/false, None as empty, strings trimmed."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value).strip()


def desired_state(desired: DesiredAccount) -> Dict[str, Any]:
    """Wire-shaped view of the attributes ``desired`` actually specifies."""
    state: Dict[str, Any] = {
        "name": desired.name or "",
        "address": desired.address,
        "userName": desired.user_name,
        "platformId": desired.platform_id,
    }
    if desired.automatic_management_enabled is not None:
        management: Dict[str, Any] = {AUTOMATIC_MANAGEMENT: desired.automatic_management_enabled}
        if desired.automatic_management_enabled is False:
            management[MANUAL_REASON] = desired.manual_management_reason
        state[SECRET_MANAGEMENT] = management
    access: Dict[str, Any] = {}
    if desired.remote_machines is not None:
        access[REMOTE_MACHINES] = ";".join(desired.remote_machines)
    if desired.access_restricted_to_remote_machines is not None:
        access[ACCESS_RESTRICTED] = desired.access_restricted_to_remote_machines
    if access:
        state[REMOTE_ACCESS] = access
    if desired.extension_properties:
        state[PLATFORM_PROPERTIES] = dict(desired.extension_properties)
    return state


def _set_op(exists: bool) -> PatchOp:
    return PatchOp.REPLACE if exists else PatchOp.ADD


def _diff_scalar(attribute: str, current: Any, wanted: Any, exists: bool) -> Optional[PatchOperation]:
    # an empty desired value never clears a populated attribute
    if not canonical(wanted):
        return None
    if canonical(current) == canonical(wanted):
        return None
    return PatchOperation(_set_op(exists), f"/{attribute}", wanted)


def _diff_nested(attribute: str, current: Dict[str, Any], wanted: Dict[str, Any]) -> List[PatchOperation]:
    operations: List[PatchOperation] = []
    reason_emitted = False
    for leaf, value in wanted.items():
        if leaf == MANUAL_REASON and reason_emitted:
            continue
        if not isinstance(value, bool) and not canonical(value):
            continue
        if canonical(current.get(leaf)) == canonical(value):
            continue
        operations.append(PatchOperation(_set_op(leaf in current), f"/{attribute}/{leaf}", value))
        if attribute == SECRET_MANAGEMENT and leaf == AUTOMATIC_MANAGEMENT and value is False:
            reason = wanted.get(MANUAL_REASON) or DEFAULT_MANUAL_REASON
            operations.append(PatchOperation(PatchOp.ADD, f"/{SECRET_MANAGEMENT}/{MANUAL_REASON}", reason))
            reason_emitted = True
    return operations


def _diff_remote_access(current: Dict[str, Any], wanted: Dict[str, Any]) -> List[PatchOperation]:
    operations: List[PatchOperation] = []
    for leaf, value in wanted.items():
        path = f"/{REMOTE_ACCESS}/{leaf}"
        existing = canonical(current.get(leaf))
        if not value:
            if existing:
                operations.append(PatchOperation(PatchOp.REMOVE, path))
            continue
        if existing == value:
            continue
        wire_value = value == "true" if leaf == ACCESS_RESTRICTED else value
        operations.append(PatchOperation(PatchOp.REPLACE, path, wire_value))
    return operations


def _diff_platform_properties(current: Dict[str, Any], wanted: Dict[str, str]) -> List[PatchOperation]:
    return [
        PatchOperation(PatchOp.ADD, f"/{PLATFORM_PROPERTIES}/{key}", value)
        for key, value in wanted.items()
        if canonical(current.get(key)) != canonical(value)
    ]


def diff(desired: DesiredAccount, existing: RemoteAccount) -> List[PatchOperation]:
    """Compute the patch that converges ``existing`` to ``desired``.

    Returns an empty list when nothing needs to change.
    """
    wanted = desired_state(desired)
    remote = existing.properties
    operations: List[PatchOperation] = []
    covered: Set[str] = set()

    for attribute, current in remote.items():
        if attribute in IMMUTABLE_ATTRIBUTES or attribute in _SPECIAL_ATTRIBUTES:
            continue
        if attribute not in wanted:
            continue
        covered.add(attribute)
        target = wanted[attribute]
        if isinstance(current, dict):
            if isinstance(target, dict):
                operations.extend(_diff_nested(attribute, current, target))
            continue
        operation = _diff_scalar(attribute, current, target, exists=True)
        if operation:
            operations.append(operation)

    for attribute, target in wanted.items():
        if attribute in covered:
            continue
        current = remote.get(attribute)
        if attribute == REMOTE_ACCESS:
            operations.extend(_diff_remote_access(current or {}, target))
        elif attribute == PLATFORM_PROPERTIES:
            operations.extend(_diff_platform_properties(current or {}, target))
        elif isinstance(target, dict):
            operations.extend(_diff_nested(attribute, {}, target))
        else:
            operation = _diff_scalar(attribute, current, target, exists=attribute in remote)
            if operation:
                operations.append(operation)

    return operations
