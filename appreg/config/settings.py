"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


# Cloud name -> (identity endpoint, directory service endpoint)
AZURE_ENVIRONMENTS: dict[str, tuple[str, str]] = {
    "Production": ("https://login.microsoftonline.com", "https://graph.microsoft.com"),
    "PPE": ("https://login.windows-ppe.net", "https://graph.microsoft-ppe.com"),
    "China": ("https://login.chinacloudapi.cn", "https://microsoftgraph.chinacloudapi.cn"),
    "Germany": ("https://login.microsoftonline.de", "https://graph.microsoft.de"),
    "USGovernment": ("https://login.microsoftonline.us", "https://graph.microsoft.us"),
}

DEFAULT_CLIENT_ID = "31359c7f-bd7e-475c-86db-fdb8c937548e"
DEFAULT_CONSENT_SCOPE = "https://microsoft.sharepoint-df.com/.default"
DEFAULT_CONSENT_WAIT_SECONDS = 60
DEFAULT_REQUEST_TIMEOUT = 30


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}", file=sys.stderr)

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _get_int(var_name: str, default: int) -> int:
    """Read a positive integer from the environment."""
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {var_name} must be an integer, got {raw!r}.") from exc
    if value < 0:
        raise RuntimeError(f"Environment variable {var_name} must not be negative.")
    return value


@dataclass
class AppConfig:
    """Runtime configuration container."""
    azure_environment: str = "Production"
    client_id: str = DEFAULT_CLIENT_ID
    consent_scope: str = DEFAULT_CONSENT_SCOPE
    consent_wait_seconds: int = DEFAULT_CONSENT_WAIT_SECONDS
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT
    cert_store_root: Path = field(default_factory=lambda: Path.home() / ".appreg" / "x509stores")

    # Operator credentials (password flow only)
    username: str = ""
    password: str = ""

    # Used to open imported certificates and protect exported ones
    certificate_password: str = ""

    @property
    def login_endpoint(self) -> str:
        """Identity endpoint for the configured cloud."""
        return AZURE_ENVIRONMENTS[self.azure_environment][0]

    @property
    def graph_endpoint(self) -> str:
        """Directory service endpoint for the configured cloud."""
        return AZURE_ENVIRONMENTS[self.azure_environment][1]


def resolve_environment(name: Optional[str]) -> str:
    """Match a cloud name case-insensitively against the known environments.

    Raises:
        RuntimeError: If the name is not a known cloud
    """
    if not name:
        return "Production"
    for known in AZURE_ENVIRONMENTS:
        if known.lower() == name.strip().lower():
            return known
    raise RuntimeError(
        f"Unknown Azure environment {name!r}. Expected one of: {', '.join(AZURE_ENVIRONMENTS)}."
    )


def load_settings() -> AppConfig:
    """Load settings from environment and /run/secrets."""
    azure_environment = resolve_environment(os.environ.get("APPREG_AZURE_ENVIRONMENT"))

    client_id = os.environ.get("APPREG_CLIENT_ID", "").strip() or DEFAULT_CLIENT_ID
    consent_scope = os.environ.get("APPREG_CONSENT_SCOPE", "").strip() or DEFAULT_CONSENT_SCOPE
    consent_wait_seconds = _get_int("APPREG_CONSENT_WAIT_SECONDS", DEFAULT_CONSENT_WAIT_SECONDS)
    request_timeout = _get_int("APPREG_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)

    store_root_raw = os.environ.get("APPREG_CERT_STORE_ROOT", "").strip()
    cert_store_root = Path(store_root_raw).expanduser() if store_root_raw else Path.home() / ".appreg" / "x509stores"

    username = os.environ.get("APPREG_USERNAME", "").strip()
    password = _load_secret_from_file("appreg_password", "APPREG_PASSWORD") or ""
    certificate_password = _load_secret_from_file(
        "appreg_certificate_password",
        "APPREG_CERTIFICATE_PASSWORD",
    ) or ""

    return AppConfig(
        azure_environment=azure_environment,
        client_id=client_id,
        consent_scope=consent_scope,
        consent_wait_seconds=consent_wait_seconds,
        request_timeout=request_timeout,
        cert_store_root=cert_store_root,
        username=username,
        password=password,
        certificate_password=certificate_password,
    )
