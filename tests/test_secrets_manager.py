import asyncio
import datetime as dt

from botocore.exceptions import ClientError, EndpointConnectionError

from mcp_adapters.backends.secrets_manager import AWSConfig, SecretsManagerBackend, flatten_tags
from mcp_adapters.servers.secrets_manager import build_server

ARN = "arn:aws:secretsmanager:us-east-1:123456789012:secret:db-password-AbCdEf"


def client_error(code: str, message: str, operation: str, status: int = 400) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": message}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class FakeSecretsClient:
    """Records every SDK call; answers from ``responses`` or raises from ``errors``."""

    def __init__(self, responses=None, errors=None):
        self.responses = responses or {}
        self.errors = errors or {}
        self.calls = []
        self.closed = False

    def _answer(self, operation, kwargs):
        self.calls.append((operation, kwargs))
        if operation in self.errors:
            raise self.errors[operation]
        return self.responses.get(operation, {})

    def create_secret(self, **kwargs):
        return self._answer("create_secret", kwargs)

    def update_secret(self, **kwargs):
        return self._answer("update_secret", kwargs)

    def get_secret_value(self, **kwargs):
        return self._answer("get_secret_value", kwargs)

    def list_secrets(self, **kwargs):
        return self._answer("list_secrets", kwargs)

    def delete_secret(self, **kwargs):
        return self._answer("delete_secret", kwargs)

    def describe_secret(self, **kwargs):
        return self._answer("describe_secret", kwargs)

    def close(self):
        self.closed = True


def call_tool(client, name, arguments):
    server = build_server(SecretsManagerBackend(AWSConfig(), client=client))
    return asyncio.run(server.dispatch(name, arguments)).payload()


def test_flatten_tags():
    assert flatten_tags(None) is None
    assert flatten_tags([{"Key": "env", "Value": "prod"}, {"Key": "team"}]) == {"env": "prod"}


def test_create_secret_sends_tags_as_list():
    client = FakeSecretsClient(responses={
        "create_secret": {"ARN": ARN, "Name": "db-password", "VersionId": "v1"},
    })

    payload = call_tool(client, "create_secret", {
        "name": "db-password",
        "secretValue": "hunter2",
        "tags": {"env": "prod"},
    })

    assert payload == {
        "success": True,
        "arn": ARN,
        "name": "db-password",
        "versionId": "v1",
        "message": 'Secret "db-password" created successfully',
    }
    operation, kwargs = client.calls[0]
    assert operation == "create_secret"
    assert kwargs == {"Name": "db-password", "SecretString": "hunter2", "Tags": [{"Key": "env", "Value": "prod"}]}


def test_create_existing_secret():
    client = FakeSecretsClient(errors={
        "create_secret": client_error("ResourceExistsException", "already exists", "CreateSecret"),
    })

    payload = call_tool(client, "create_secret", {"name": "db-password", "secretValue": "x"})

    assert payload == {
        "error": 'AWS Secrets Manager Error: Secret with name "db-password" already exists',
        "code": "RESOURCE_EXISTS",
        "secretName": "db-password",
    }


def test_get_missing_secret_is_correlated():
    client = FakeSecretsClient(errors={
        "get_secret_value": client_error(
            "ResourceNotFoundException", "Secrets Manager can't find the specified secret.", "GetSecretValue"
        ),
    })

    payload = call_tool(client, "get_secret", {"secretId": "missing"})

    assert payload == {
        "error": 'AWS Secrets Manager Error: Secret "missing" not found',
        "code": "RESOURCE_NOT_FOUND",
        "secretId": "missing",
    }


def test_get_secret_renders_dates():
    created = dt.datetime(2024, 5, 1, 12, 30, tzinfo=dt.timezone.utc)
    client = FakeSecretsClient(responses={
        "get_secret_value": {
            "ARN": ARN, "Name": "db-password", "SecretString": '{"password": "hunter2"}',
            "VersionId": "v2", "CreatedDate": created,
        },
    })

    payload = call_tool(client, "get_secret", {"secretId": "db-password", "versionStage": "AWSPREVIOUS"})

    assert payload["secretValue"] == '{"password": "hunter2"}'
    assert payload["createdDate"] == "2024-05-01T12:30:00+00:00"
    assert client.calls[0][1] == {"SecretId": "db-password", "VersionStage": "AWSPREVIOUS"}


def test_other_client_errors():
    client = FakeSecretsClient(errors={
        "update_secret": client_error("InvalidRequestException", "secret is scheduled for deletion", "UpdateSecret"),
        "describe_secret": client_error("AccessDeniedException", "not authorized", "DescribeSecret", 403),
    })

    invalid = call_tool(client, "update_secret", {"secretId": "db-password", "secretValue": "x"})
    denied = call_tool(client, "describe_secret", {"secretId": "db-password"})

    assert invalid["error"] == "AWS Secrets Manager Error: Invalid request: secret is scheduled for deletion"
    assert invalid["code"] == "INVALID_REQUEST"
    assert denied["error"] == "AWS Secrets Manager Error: Failed to describe secret: not authorized"
    assert denied["code"] == "DESCRIBE_FAILED"
    assert denied["secretId"] == "db-password"


def test_network_failure():
    client = FakeSecretsClient(errors={
        "list_secrets": EndpointConnectionError(endpoint_url="https://secretsmanager.us-east-1.amazonaws.com"),
    })

    payload = call_tool(client, "list_secrets", {})

    assert payload["error"].startswith("AWS Secrets Manager Error: Failed to list secret:")
    assert payload["code"] == "CONNECTION_ERROR"


def test_list_secrets_flattens_tags():
    client = FakeSecretsClient(responses={
        "list_secrets": {"SecretList": [
            {"ARN": ARN, "Name": "db-password", "Tags": [{"Key": "env", "Value": "prod"}]},
            {"ARN": ARN + "2", "Name": "api-key"},
        ]},
    })

    payload = call_tool(client, "list_secrets", {"maxResults": 10})

    assert payload["count"] == 2
    assert payload["secrets"][0]["tags"] == {"env": "prod"}
    assert payload["secrets"][1]["tags"] is None
    assert client.calls[0][1] == {"MaxResults": 10}


def test_delete_secret_recovery_window():
    client = FakeSecretsClient(responses={"delete_secret": {"ARN": ARN, "Name": "db-password"}})

    scheduled = call_tool(client, "delete_secret", {"secretId": "db-password", "recoveryWindowInDays": 7})
    forced = call_tool(client, "delete_secret", {"secretId": "db-password", "forceDelete": True})

    assert scheduled["message"] == 'Secret "db-password" scheduled for deletion in 7 days'
    assert forced["message"] == 'Secret "db-password" deleted immediately'
    assert client.calls[0][1] == {"SecretId": "db-password", "RecoveryWindowInDays": 7}
    assert client.calls[1][1] == {"SecretId": "db-password", "ForceDeleteWithoutRecovery": True}


def test_recovery_window_bounds():
    payload = call_tool(FakeSecretsClient(), "delete_secret", {"secretId": "x", "recoveryWindowInDays": 3})
    assert payload["error"].startswith("Invalid parameters:")
    assert payload["secretId"] == "x"


def test_describe_secret():
    client = FakeSecretsClient(responses={"describe_secret": {
        "ARN": ARN,
        "Name": "db-password",
        "RotationEnabled": False,
        "VersionIdsToStages": {"v1": ["AWSCURRENT"]},
        "Tags": [{"Key": "env", "Value": "prod"}],
    }})

    payload = call_tool(client, "describe_secret", {"secretId": "db-password"})

    assert payload["rotationEnabled"] is False
    assert payload["versionIdsToStages"] == {"v1": ["AWSCURRENT"]}
    assert payload["tags"] == {"env": "prod"}
    assert payload["lastRotatedDate"] is None


def test_probe_and_close():
    backend = SecretsManagerBackend(AWSConfig(), client=FakeSecretsClient())
    assert asyncio.run(backend.test_connection()) is True

    failing = SecretsManagerBackend(AWSConfig(), client=FakeSecretsClient(errors={
        "list_secrets": client_error("UnrecognizedClientException", "bad token", "ListSecrets"),
    }))
    assert asyncio.run(failing.test_connection()) is False

    asyncio.run(backend.close())
    assert backend.client.closed
