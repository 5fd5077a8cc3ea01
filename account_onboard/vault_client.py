"""REST client for the vault (PVWA) API.

One ``requests.Session`` carries the session token for every call in a run.
A token obtained through :meth:`VaultClient.logon` is owned by the client and
released by :meth:`VaultClient.logoff`; a token handed in by the caller is
left alone.

Non-2xx answers raise :class:`APIError` with the vault's ``ErrorCode`` and
``ErrorMessage``. Timeouts and connection failures raise
:class:`TransportError`. Nothing is retried.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .config import REQUEST_TIMEOUT, VERIFY_TLS
from .exceptions import APIError, AuthenticationError, TransportError

# vault error codes the services branch on
SAFE_NOT_FOUND_CODES = frozenset({"SFWS0007"})
MEMBER_EXISTS_CODES = frozenset({"SFWS0012"})


def _segment(value: str) -> str:
    return quote(value, safe="")


class VaultClient:
    """Thin wrapper over the account, Safe and auth endpoints."""

    def __init__(self, base_url: str, token: Optional[str] = None,
                 timeout: int = REQUEST_TIMEOUT, verify: bool = VERIFY_TLS):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.verify = verify
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        self._owns_token = False
        if token:
            self.session.headers["Authorization"] = token

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _next_url(self, next_link: str) -> str:
        """Resolve a ``nextLink``, which the vault returns relative to its root."""
        if next_link.lower().startswith(("http://", "https://")):
            return next_link
        link = next_link.lstrip("/")
        if link.lower().startswith("api/"):
            link = link[4:]
        return self._url(link)

    def invoke(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
               body: Any = None, url: Optional[str] = None) -> Any:
        """Send one request and return the decoded JSON body (None when empty)."""
        target = url or self._url(path)
        command = f"{method} {path}"
        try:
            response = self.session.request(method, target, params=params, json=body, timeout=self.timeout)
        except requests.Timeout as e:
            raise TransportError(f"Timed out after {self.timeout}s: {command}", {"command": command}) from e
        except requests.RequestException as e:
            raise TransportError(f"Request failed: {command}: {e}", {"command": command}) from e

        if response.status_code == 401:
            raise AuthenticationError("Session is not authenticated (HTTP 401)", {"command": command})

        payload = self._decode(response)
        if response.status_code >= 400:
            error_code, message = None, None
            if isinstance(payload, dict):
                error_code = payload.get("ErrorCode")
                message = payload.get("ErrorMessage")
            raise APIError(
                message or f"HTTP {response.status_code} for {command}",
                status_code=response.status_code,
                error_code=error_code,
                response=payload,
                command=command,
            )
        return payload

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def logon(self, username: str, password: str, auth_type: str = "cyberark") -> str:
        """Open a session. The token is owned (and later logged off) by this client."""
        body = {"username": username, "password": password, "concurrentSession": True}
        try:
            token = self.invoke("POST", f"auth/{auth_type}/Logon", body=body)
        except APIError as e:
            raise AuthenticationError(f"Logon failed for '{username}': {e}", {"status_code": e.status_code}) from e
        if not token or not isinstance(token, str):
            raise AuthenticationError(f"Logon for '{username}' returned no session token")
        self.session.headers["Authorization"] = token
        self._owns_token = True
        return token

    def logoff(self) -> bool:
        """Release the session if this client opened it. Returns True when logged off."""
        if not self._owns_token:
            return False
        try:
            self.invoke("POST", "auth/Logoff")
        finally:
            self.session.headers.pop("Authorization", None)
            self._owns_token = False
        return True

    @property
    def owns_token(self) -> bool:
        return self._owns_token

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def search_accounts(self, safe_name: str, search: Optional[str] = None) -> List[Dict[str, Any]]:
        """All accounts of a Safe matching ``search``, every page included."""
        params: Dict[str, Any] = {"filter": f"safeName eq {safe_name}"}
        if search:
            params["search"] = search
        page = self.invoke("GET", "accounts", params=params) or {}
        accounts: List[Dict[str, Any]] = list(page.get("value", []))
        next_link = page.get("nextLink")
        while next_link:
            page = self.invoke("GET", "accounts", url=self._next_url(next_link)) or {}
            accounts.extend(page.get("value", []))
            next_link = page.get("nextLink")
        return accounts

    def add_account(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.invoke("POST", "accounts", body=body) or {}

    def patch_account(self, account_id: str, operations: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self.invoke("PATCH", f"accounts/{_segment(account_id)}", body=operations) or {}

    def update_password(self, account_id: str, secret: str) -> None:
        body = {"ChangeEntireGroup": False, "NewCredentials": secret}
        self.invoke("POST", f"accounts/{_segment(account_id)}/password/update", body=body)

    def delete_account(self, account_id: str) -> None:
        self.invoke("DELETE", f"accounts/{_segment(account_id)}")

    # ------------------------------------------------------------------
    # Safes
    # ------------------------------------------------------------------

    def get_safe(self, safe_name: str) -> Optional[Dict[str, Any]]:
        """Return the Safe, or None when the vault reports it missing."""
        try:
            return self.invoke("GET", f"safes/{_segment(safe_name)}")
        except APIError as e:
            if e.status_code == 404 or e.error_code in SAFE_NOT_FOUND_CODES:
                return None
            raise

    def add_safe(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.invoke("POST", "safes", body=body) or {}

    def list_safe_members(self, safe_name: str) -> List[Dict[str, Any]]:
        page = self.invoke("GET", f"safes/{_segment(safe_name)}/members") or {}
        members: List[Dict[str, Any]] = list(page.get("value", []))
        next_link = page.get("nextLink")
        while next_link:
            page = self.invoke("GET", f"safes/{_segment(safe_name)}/members", url=self._next_url(next_link)) or {}
            members.extend(page.get("value", []))
            next_link = page.get("nextLink")
        return members

    def add_safe_member(self, safe_name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.invoke("POST", f"safes/{_segment(safe_name)}/members", body=body) or {}
