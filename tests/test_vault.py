"""
Tests for the vault AppRole login.

HTTP is served by httpx.MockTransport — no vault needed.
"""

import json

import httpx
import pytest

from run_puppet.errors import CredentialError, VaultError
from run_puppet.vault import APPROLE_ID_BYTE_SIZE, get_token, read_approle_id

VAULT_URL = "https://vault.example.com:8200"


def _transport(status_code: int = 200, body=None, calls: list = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if isinstance(body, (dict, list)):
            return httpx.Response(status_code, json=body)
        return httpx.Response(status_code, text=body or "")

    return httpx.MockTransport(handler)


LOGIN_OK = {
    "auth": {
        "client_token": "hvs.CAESIJ-test-token",
        "lease_duration": 1200,
        "renewable": True,
    }
}


class TestReadApproleId:

    def test_strips_newline(self, credential_files, approle_ids):
        role_id_file, secret_id_file = credential_files

        assert read_approle_id(role_id_file) == approle_ids[0]
        assert read_approle_id(secret_id_file) == approle_ids[1]

    def test_reads_at_most_fixed_size(self, tmp_path):
        path = tmp_path / "role_id"
        path.write_text("a" * 100)

        assert read_approle_id(path) == "a" * APPROLE_ID_BYTE_SIZE

    def test_missing_file(self, tmp_path):
        with pytest.raises(CredentialError, match="failed reading"):
            read_approle_id(tmp_path / "missing")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "role_id"
        path.write_text("\n")

        with pytest.raises(CredentialError, match="is empty"):
            read_approle_id(path)

    def test_binary_garbage(self, tmp_path):
        path = tmp_path / "role_id"
        path.write_bytes(b"\xff\xfe\xfd")

        with pytest.raises(CredentialError, match="UTF-8"):
            read_approle_id(path)


class TestGetToken:

    def test_login_returns_client_token(self):
        calls = []

        token = get_token(
            VAULT_URL, "role", "secret", transport=_transport(body=LOGIN_OK, calls=calls)
        )

        assert token == "hvs.CAESIJ-test-token"
        assert len(calls) == 1
        request = calls[0]
        assert request.method == "POST"
        assert str(request.url) == f"{VAULT_URL}/v1/auth/approle/login"
        assert json.loads(request.content) == {"role_id": "role", "secret_id": "secret"}

    def test_custom_mount(self):
        calls = []

        get_token(
            VAULT_URL + "/", "role", "secret", mount="/ci-approle/",
            transport=_transport(body=LOGIN_OK, calls=calls),
        )

        assert calls[0].url.path == "/v1/auth/ci-approle/login"

    def test_vault_error_response(self):
        transport = _transport(400, body={"errors": ["invalid role or secret ID"]})

        with pytest.raises(VaultError, match="HTTP 400: invalid role or secret ID"):
            get_token(VAULT_URL, "role", "wrong", transport=transport)

    def test_vault_error_is_credential_error(self):
        transport = _transport(503, body="Vault is sealed")

        with pytest.raises(CredentialError) as exc_info:
            get_token(VAULT_URL, "role", "secret", transport=transport)

        assert exc_info.value.exit_code == 2
        assert "Vault is sealed" in str(exc_info.value)

    def test_missing_token(self):
        transport = _transport(body={"auth": None, "warnings": ["nothing to see"]})

        with pytest.raises(VaultError, match="no client token"):
            get_token(VAULT_URL, "role", "secret", transport=transport)

    @pytest.mark.parametrize("auth", ["denied", ["x"], 42])
    def test_auth_not_an_object(self, auth):
        transport = _transport(body={"auth": auth})

        with pytest.raises(VaultError, match="no client token"):
            get_token(VAULT_URL, "role", "secret", transport=transport)

    @pytest.mark.parametrize("token", [12345, ["hvs.x"], ""])
    def test_client_token_not_a_string(self, token):
        transport = _transport(body={"auth": {"client_token": token}})

        with pytest.raises(VaultError, match="no client token"):
            get_token(VAULT_URL, "role", "secret", transport=transport)

    def test_list_body(self):
        transport = _transport(body=[{"auth": {"client_token": "hvs.x"}}])

        with pytest.raises(VaultError, match="no client token"):
            get_token(VAULT_URL, "role", "secret", transport=transport)

    def test_non_json_response(self):
        transport = _transport(body="<html>proxy error</html>")

        with pytest.raises(VaultError, match="not JSON"):
            get_token(VAULT_URL, "role", "secret", transport=transport)

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(VaultError, match="connection refused"):
            get_token(VAULT_URL, "role", "secret", transport=httpx.MockTransport(handler))
