"""
Vault — AppRole login for a short-lived puppet token.

The role id and secret id live in two root-readable files on the host.
They are exchanged for a client token which puppet's vault lookups use
through ``VAULT_TOKEN``.

## Endpoint

    POST {vault_url}/v1/auth/{mount}/login
    {"role_id": "...", "secret_id": "..."}
    → {"auth": {"client_token": "hvs....", ...}}
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import httpx

from .errors import CredentialError, VaultError

logger = logging.getLogger(__name__)

# A UUID plus trailing newline
APPROLE_ID_BYTE_SIZE = 37


def read_approle_id(path: Path) -> str:
    """
    Read a role id / secret id file.

    Raises:
        CredentialError: the file is missing, unreadable or empty
    """
    path = Path(path)
    try:
        with path.open("rb") as f:
            raw = f.read(APPROLE_ID_BYTE_SIZE)
    except OSError as e:
        raise CredentialError(f"failed reading {path}: {e}") from e

    try:
        value = raw.decode("utf-8").strip().strip("\x00")
    except UnicodeDecodeError as e:
        raise CredentialError(f"{path} is not valid UTF-8") from e

    if not value:
        raise CredentialError(f"{path} is empty")
    return value


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    errors = data.get("errors") if isinstance(data, dict) else None
    if errors:
        return "; ".join(str(e) for e in errors)
    return response.text.strip()[:200] or response.reason_phrase


def get_token(
    vault_url: str,
    role_id: str,
    secret_id: str,
    mount: str = "approle",
    timeout: float = 30.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> str:
    """
    Exchange an AppRole role id / secret id for a client token.

    Raises:
        VaultError: the request failed or the response carries no token
    """
    url = f"{vault_url.rstrip('/')}/v1/auth/{mount.strip('/')}/login"
    logger.debug(f"[vault] AppRole login at {url}")

    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.post(
                url,
                json={"role_id": role_id, "secret_id": secret_id},
                headers={"User-Agent": "run-puppet"},
            )
    except httpx.HTTPError as e:
        raise VaultError(f"vault login request to {url} failed: {e}") from e

    if response.status_code >= 400:
        raise VaultError(
            f"vault login failed with HTTP {response.status_code}: {_error_detail(response)}"
        )

    try:
        body: Any = response.json()
    except ValueError as e:
        raise VaultError("vault login response is not JSON") from e

    auth = body.get("auth") if isinstance(body, dict) else None
    if not isinstance(auth, dict):
        raise VaultError("vault login response carries no client token")
    token = auth.get("client_token")
    if not isinstance(token, str) or not token:
        raise VaultError("vault login response carries no client token")

    lease = auth.get("lease_duration")
    logger.info(f"[vault] Got token (lease {lease}s)" if lease else "[vault] Got token")
    return token
