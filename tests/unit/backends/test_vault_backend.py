from unittest.mock import MagicMock

import pytest
import requests
from hvac.exceptions import Forbidden, InvalidPath, InvalidRequest, Unauthorized, VaultDown

from kvenv.adapters.backends import vault
from kvenv.adapters.backends.vault import VaultKvBackend, split_prefix
from kvenv.config.configs import VaultConfig
from kvenv.errors.errors import (
    AuthenticationError,
    BackendError,
    SecretNotFoundError,
    TransientBackendError,
)
from kvenv.types.types import BackendFamily


def _kv(data: dict) -> dict:
    return {"data": {"data": data, "metadata": {"version": 1}}}


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def kv(client) -> MagicMock:
    return client.secrets.kv.v2


@pytest.fixture
def backend(client) -> VaultKvBackend:
    config = VaultConfig(address="http://127.0.0.1:8200", token="s.token", mount_point="kv/")
    return VaultKvBackend(config, client=client)


@pytest.mark.parametrize(
    "prefix,expected",
    [("app/prod-", ("app", "prod-")), ("prod-", ("", "prod-")), ("a/b/", ("a/b", ""))],
)
def test_split_prefix(prefix, expected):
    assert split_prefix(prefix) == expected


def test_identity(backend):
    assert backend.name == "vault"
    assert backend.family is BackendFamily.KEY_VALUE


class TestFetch:
    @pytest.mark.asyncio
    async def test_single_returns_data_map(self, backend, kv):
        kv.read_secret_version.return_value = _kv({"A": "1", "N": 2})
        payload = await backend.fetch_single("app/config")
        assert payload.data == {"A": "1", "N": 2}
        kv.read_secret_version.assert_called_once_with(
            path="app/config", mount_point="kv", raise_on_deleted_version=True
        )

    @pytest.mark.asyncio
    async def test_prefix_lists_parent_directory(self, backend, kv):
        kv.list_secrets.return_value = {
            "data": {"keys": ["prod-b", "prod-a", "prod-dir/", "stage-x"]}
        }
        kv.read_secret_version.side_effect = lambda path, mount_point, raise_on_deleted_version: _kv(
            {"FROM": path}
        )
        payloads = await backend.fetch_prefixed("app/prod-")
        kv.list_secrets.assert_called_once_with(path="app", mount_point="kv")
        assert [p.name for p in payloads] == ["app/prod-a", "app/prod-b"]
        assert payloads[0].data == {"FROM": "app/prod-a"}

    @pytest.mark.asyncio
    async def test_prefix_at_mount_root(self, backend, kv):
        kv.list_secrets.return_value = {"data": {"keys": ["svc-a", "other"]}}
        kv.read_secret_version.return_value = _kv({"A": "1"})
        payloads = await backend.fetch_prefixed("svc-")
        kv.list_secrets.assert_called_once_with(path="", mount_point="kv")
        assert [p.name for p in payloads] == ["svc-a"]

    @pytest.mark.asyncio
    async def test_missing_directory_is_not_found(self, backend, kv):
        kv.list_secrets.side_effect = InvalidPath()
        with pytest.raises(SecretNotFoundError):
            await backend.fetch_prefixed("app/prod-")

    @pytest.mark.parametrize(
        "error,expected",
        [
            (InvalidPath(), SecretNotFoundError),
            (Forbidden(), AuthenticationError),
            (Unauthorized(), AuthenticationError),
            (VaultDown(), TransientBackendError),
            (requests.exceptions.ConnectionError(), TransientBackendError),
            (InvalidRequest(), BackendError),
        ],
    )
    @pytest.mark.asyncio
    async def test_error_mapping(self, backend, kv, error, expected):
        kv.read_secret_version.side_effect = error
        with pytest.raises(expected) as exc:
            await backend.fetch_single("app/config")
        assert type(exc.value) is expected
        assert exc.value.backend == "vault"


def test_client_creation(monkeypatch):
    client_cls = MagicMock()
    monkeypatch.setattr(vault.hvac, "Client", client_cls)
    vault.create_client(VaultConfig(address="http://vault:8200", token="tok"), timeout_s=4.0)
    client_cls.assert_called_once_with(url="http://vault:8200", token="tok", timeout=4.0)
