"""
Safe member permission names.
Legacy (v1) member listings use PascalCase names; the Safe members API wants
the camelCase names below.
"""

from typing import Any, Dict, Mapping

PERMISSION_NAMES: Dict[str, str] = {
    "UseAccounts": "useAccounts",
    "RetrieveAccounts": "retrieveAccounts",
    "ListAccounts": "listAccounts",
    "AddAccounts": "addAccounts",
    "UpdateAccountContent": "updateAccountContent",
    "UpdateAccountProperties": "updateAccountProperties",
    "InitiateCPMAccountManagementOperations": "initiateCPMAccountManagementOperations",
    "SpecifyNextAccountContent": "specifyNextAccountContent",
    "RenameAccounts": "renameAccounts",
    "DeleteAccounts": "deleteAccounts",
    "UnlockAccounts": "unlockAccounts",
    "ManageSafe": "manageSafe",
    "ManageSafeMembers": "manageSafeMembers",
    "BackupSafe": "backupSafe",
    "ViewAuditLog": "viewAuditLog",
    "ViewSafeMembers": "viewSafeMembers",
    "AccessWithoutConfirmation": "accessWithoutConfirmation",
    "CreateFolders": "createFolders",
    "DeleteFolders": "deleteFolders",
    "MoveAccountsAndFolders": "moveAccountsAndFolders",
    "RequestsAuthorizationLevel1": "requestsAuthorizationLevel1",
    "RequestsAuthorizationLevel2": "requestsAuthorizationLevel2",
}

_API_NAMES = frozenset(PERMISSION_NAMES.values())

# built-in members every new Safe gets from the vault itself
DEFAULT_MEMBERS = frozenset({
    "master", "batch", "backup users", "dr users", "auditors", "operators",
    "notification engines", "pvwagwaccounts", "pvwaappusers", "psmappusers",
    "administrator",
})


def translate_permissions(permissions: Mapping[str, Any]) -> Dict[str, bool]:
    """Map a member's permissions to API names. Unknown names are dropped."""
    translated: Dict[str, bool] = {}
    for name, value in permissions.items():
        api_name = name if name in _API_NAMES else PERMISSION_NAMES.get(name)
        if api_name is None:
            continue
        if isinstance(value, str):
            value = value.strip().lower() == "true"
        translated[api_name] = bool(value)
    return translated


def is_default_member(member_name: str) -> bool:
    return member_name.strip().lower() in DEFAULT_MEMBERS
