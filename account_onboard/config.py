import os
from pathlib import Path

# PVWA REST base, e.g. https://pvwa.example.com/PasswordVault/API
PVWA_URL = os.getenv("ONBOARD_PVWA_URL", "")
AUTH_TYPE = os.getenv("ONBOARD_AUTH_TYPE", "cyberark")

# credentials, used only when no logon token is passed
VAULT_USER = os.getenv("ONBOARD_USER", "")
VAULT_PASSWORD = os.getenv("ONBOARD_PASSWORD", "")

# operational behaviour
REQUEST_TIMEOUT = int(os.getenv("ONBOARD_TIMEOUT", "60"))
VERIFY_TLS = bool(int(os.getenv("ONBOARD_VERIFY_TLS", "1")))
RUNS_DIR = Path(os.getenv("ONBOARD_RUNS_DIR", "./runs"))

# text sent when automatic management is disabled without a reason
DEFAULT_MANUAL_REASON = "[No Reason]"
