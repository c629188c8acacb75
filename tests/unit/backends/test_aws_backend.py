from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from kvenv.adapters.backends import aws
from kvenv.adapters.backends.aws import AwsSecretsManagerBackend
from kvenv.config.configs import AwsConfig
from kvenv.errors.errors import (
    AuthenticationError,
    BackendError,
    SecretNotFoundError,
    TransientBackendError,
)
from kvenv.types.types import BackendFamily


def _client_error(code: str, status: int = 400, op: str = "GetSecretValue") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": "msg"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        op,
    )


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def backend(client) -> AwsSecretsManagerBackend:
    return AwsSecretsManagerBackend(AwsConfig(region="eu-west-1"), client=client)


def test_identity(backend):
    assert backend.name == "aws"
    assert backend.family is BackendFamily.KEY_VALUE
    assert backend.dash_to_underscore is False


class TestGet:
    @pytest.mark.asyncio
    async def test_secret_string(self, backend, client):
        client.get_secret_value.return_value = {"SecretString": '{"A":"1"}'}
        payload = await backend.fetch_single("app")
        assert payload.data == '{"A":"1"}'
        client.get_secret_value.assert_called_once_with(SecretId="app")

    @pytest.mark.asyncio
    async def test_secret_binary(self, backend, client):
        client.get_secret_value.return_value = {"SecretBinary": b'{"A":"1"}'}
        payload = await backend.fetch_single("app")
        assert payload.data == b'{"A":"1"}'

    @pytest.mark.parametrize(
        "error,expected",
        [
            (_client_error("ResourceNotFoundException"), SecretNotFoundError),
            (_client_error("AccessDeniedException"), AuthenticationError),
            (_client_error("UnrecognizedClientException"), AuthenticationError),
            (_client_error("ThrottlingException"), TransientBackendError),
            (_client_error("InternalServiceError", status=500), TransientBackendError),
            (_client_error("SomethingNew", status=503), TransientBackendError),
            (_client_error("InvalidParameterException"), BackendError),
            (NoCredentialsError(), AuthenticationError),
            (EndpointConnectionError(endpoint_url="https://example.invalid"), TransientBackendError),
        ],
    )
    @pytest.mark.asyncio
    async def test_error_mapping(self, backend, client, error, expected):
        client.get_secret_value.side_effect = error
        with pytest.raises(expected) as exc:
            await backend.fetch_single("app")
        assert type(exc.value) is expected
        assert exc.value.backend == "aws"
        assert exc.value.secret == "app"


class TestPrefixed:
    @pytest.mark.asyncio
    async def test_lists_with_name_filter_and_checks_prefix(self, backend, client):
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"SecretList": [{"Name": "svc-b"}, {"Name": "other-svc-x"}]},
            {"SecretList": [{"Name": "svc-a"}]},
        ]
        client.get_paginator.return_value = paginator
        client.get_secret_value.side_effect = lambda SecretId: {"SecretString": f'{{"N":"{SecretId}"}}'}

        payloads = await backend.fetch_prefixed("svc-")

        client.get_paginator.assert_called_once_with("list_secrets")
        paginator.paginate.assert_called_once_with(Filters=[{"Key": "name", "Values": ["svc-"]}])
        assert [p.name for p in payloads] == ["svc-a", "svc-b"]

    @pytest.mark.asyncio
    async def test_listing_error(self, backend, client):
        client.get_paginator.return_value.paginate.side_effect = _client_error(
            "AccessDeniedException", op="ListSecrets"
        )
        with pytest.raises(AuthenticationError):
            await backend.fetch_prefixed("svc-")

    @pytest.mark.asyncio
    async def test_no_match(self, backend, client):
        client.get_paginator.return_value.paginate.return_value = [{"SecretList": []}]
        with pytest.raises(SecretNotFoundError):
            await backend.fetch_prefixed("svc-")


class TestClientCreation:
    def test_static_keys(self, monkeypatch):
        session_cls = MagicMock()
        monkeypatch.setattr(aws.boto3.session, "Session", session_cls)
        config = AwsConfig(region="us-east-1", access_key_id="AKIA", secret_access_key="s3cr3t")
        aws.create_client(config)
        session_cls.assert_called_once_with(
            aws_access_key_id="AKIA", aws_secret_access_key="s3cr3t", region_name="us-east-1"
        )
        (service,), kwargs = session_cls.return_value.client.call_args
        assert service == "secretsmanager"
        assert kwargs["config"].connect_timeout == 60.0
        assert kwargs["config"].read_timeout == 60.0

    def test_default_chain(self, monkeypatch):
        session_cls = MagicMock()
        monkeypatch.setattr(aws.boto3.session, "Session", session_cls)
        aws.create_client(AwsConfig(region="us-east-1"))
        session_cls.assert_called_once_with(region_name="us-east-1")

    def test_request_timeouts_follow_deadline(self, monkeypatch):
        session_cls = MagicMock()
        monkeypatch.setattr(aws.boto3.session, "Session", session_cls)
        aws.create_client(AwsConfig(region="us-east-1"), timeout_s=5.0)
        config = session_cls.return_value.client.call_args.kwargs["config"]
        assert (config.connect_timeout, config.read_timeout) == (5.0, 5.0)
