from pathlib import Path

import pytest
from pydantic import ValidationError

from kvenv.config.configs import (
    AwsConfig,
    AzureConfig,
    DataConfig,
    GoogleConfig,
    OutputFileConfig,
    VaultConfig,
    build_config,
)
from kvenv.errors.errors import ConfigurationError, ExitCode
from kvenv.types.types import ResolutionMode, SecretSelector


class TestSelector:
    def test_name(self):
        selector = SecretSelector(secret_name="app")
        assert selector.mode is ResolutionMode.SINGLE
        assert selector.identifier == "app"

    def test_prefix(self):
        selector = SecretSelector(secret_prefix="PFX-")
        assert selector.mode is ResolutionMode.PREFIXED
        assert selector.identifier == "PFX-"

    @pytest.mark.parametrize(
        "kwargs", [{}, {"secret_name": "a", "secret_prefix": "b"}, {"secret_name": ""}]
    )
    def test_exactly_one(self, kwargs):
        with pytest.raises(ConfigurationError):
            SecretSelector(**kwargs)


class TestDataConfig:
    def test_defaults(self):
        cfg = DataConfig(secret_name="app")
        assert cfg.timeout_s == 60.0
        assert cfg.max_concurrency == 8
        assert cfg.mask == frozenset()
        assert cfg.snapshot_env is False
        assert cfg.selector == SecretSelector(secret_name="app")

    def test_mask_list_becomes_set(self):
        cfg = build_config(DataConfig, secret_prefix="p", mask=["A", "B", "A"])
        assert cfg.mask == frozenset({"A", "B"})

    def test_name_and_prefix_conflict(self):
        with pytest.raises(ConfigurationError) as exc:
            build_config(DataConfig, secret_name="a", secret_prefix="b")
        assert exc.value.exit_code == ExitCode.CONFIGURATION_ERROR
        assert "exactly one" in str(exc.value)

    @pytest.mark.parametrize("field,value", [("timeout_s", 0), ("max_concurrency", 0)])
    def test_bounds(self, field, value):
        with pytest.raises(ConfigurationError) as exc:
            build_config(DataConfig, secret_name="a", **{field: value})
        assert exc.value.field == field

    def test_unknown_field_forbidden(self):
        with pytest.raises(ValidationError):
            DataConfig(secret_name="a", nope=1)


class TestBackendConfigs:
    def test_aws_region_required(self):
        with pytest.raises(ConfigurationError) as exc:
            build_config(AwsConfig, region=None)
        assert exc.value.field == "region"

    def test_aws_keys_in_pairs(self):
        with pytest.raises(ConfigurationError):
            build_config(AwsConfig, region="r", access_key_id="AKIA")

    def test_aws_secret_hidden_in_repr(self):
        cfg = AwsConfig(region="r", access_key_id="AKIA", secret_access_key="hunter2")
        assert "hunter2" not in repr(cfg)
        assert cfg.uses_static_keys

    def test_azure_name_maps_to_url(self):
        assert AzureConfig(keyvault_name="myvault").vault_url == "https://myvault.vault.azure.net"

    def test_azure_full_url(self):
        url = "https://custom.vault.usgovcloudapi.net"
        assert AzureConfig(keyvault_url=url).vault_url == url

    def test_azure_name_xor_url(self):
        with pytest.raises(ConfigurationError):
            build_config(AzureConfig)
        with pytest.raises(ConfigurationError):
            build_config(AzureConfig, keyvault_name="a", keyvault_url="https://b")

    def test_azure_partial_triple(self):
        with pytest.raises(ConfigurationError):
            build_config(AzureConfig, keyvault_name="a", tenant_id="t", client_id="c")

    def test_google_credentials_exclusive(self):
        with pytest.raises(ConfigurationError):
            build_config(
                GoogleConfig, project="p", credentials_file=Path("/x.json"), credentials_json="{}"
            )

    def test_google_project_required(self):
        with pytest.raises(ConfigurationError):
            build_config(GoogleConfig)

    def test_vault_defaults(self):
        cfg = build_config(VaultConfig, address="http://v:8200", token="t", mount_point=None)
        assert cfg.mount_point == "secret"

    def test_vault_token_required(self):
        with pytest.raises(ConfigurationError) as exc:
            build_config(VaultConfig, address="http://v:8200")
        assert exc.value.field == "token"

    def test_output_file_xor_dir(self):
        with pytest.raises(ConfigurationError):
            build_config(OutputFileConfig, output_file=Path("a"), output_dir=Path("b"))
        assert build_config(OutputFileConfig).output_file is None
