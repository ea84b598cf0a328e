"""
AWS Secrets Manager MCP server.

Credentials come from AWS_PROFILE, or AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY,
or the default boto3 credential chain. Dates are rendered ISO-8601 and tag
lists are flattened to {key: value}.

Launch:
    AWS_REGION=eu-west-1 python -m mcp_adapters.servers.secrets_manager
"""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import Field

from mcp_adapters import __version__
from mcp_adapters.backends.secrets_manager import AWSConfig, SecretsManagerBackend
from mcp_adapters.lifecycle import run_server
from mcp_adapters.schema import ToolParams
from mcp_adapters.server import ToolHandler, ToolServer


class CreateSecretParams(ToolParams):
    name: str = Field(min_length=1, description="Name of the secret")
    secret_value: str = Field(min_length=1, description="Secret value (string or JSON)")
    description: str | None = Field(None, description="Description of the secret")
    tags: dict[str, str] | None = Field(None, description="Tags as key/value pairs")


class UpdateSecretParams(ToolParams):
    secret_id: str = Field(min_length=1, description="Secret name or ARN")
    secret_value: str = Field(min_length=1, description="New secret value")


class GetSecretParams(ToolParams):
    secret_id: str = Field(min_length=1, description="Secret name or ARN")
    version_stage: str = Field("AWSCURRENT", description="Version stage to retrieve")


class ListSecretsParams(ToolParams):
    max_results: int | None = Field(None, ge=1, le=100, description="Maximum number of secrets to return")


class DeleteSecretParams(ToolParams):
    secret_id: str = Field(min_length=1, description="Secret name or ARN")
    force_delete: bool = Field(False, description="Delete immediately without a recovery window")
    recovery_window_in_days: int = Field(30, ge=7, le=30, description="Days before permanent deletion")


class SecretIdParams(ToolParams):
    secret_id: str = Field(min_length=1, description="Secret name or ARN")


class SecretsTool(ToolHandler):
    context_fields = ("secretId",)

    def __init__(self, secrets: SecretsManagerBackend):
        self.secrets = secrets


class CreateSecretTool(SecretsTool):
    name = "create_secret"
    title = "Create Secret"
    description = "Create a new secret in AWS Secrets Manager"
    params_model = CreateSecretParams

    def error_context(self, values: Mapping[str, Any]) -> dict[str, Any]:
        return {"secretName": values["name"]} if "name" in values else {}

    async def handle(self, params: CreateSecretParams) -> dict:
        ref = await self.secrets.create_secret(
            params.name, params.secret_value, params.description, params.tags
        )
        return {
            "success": True,
            "arn": ref.arn,
            "name": ref.name,
            "versionId": ref.version_id,
            "message": f'Secret "{params.name}" created successfully',
        }


class UpdateSecretTool(SecretsTool):
    name = "update_secret"
    title = "Update Secret"
    description = "Update an existing secret value"
    params_model = UpdateSecretParams

    async def handle(self, params: UpdateSecretParams) -> dict:
        ref = await self.secrets.update_secret(params.secret_id, params.secret_value)
        return {
            "success": True,
            "arn": ref.arn,
            "name": ref.name,
            "versionId": ref.version_id,
            "message": f'Secret "{params.secret_id}" updated successfully',
        }


class GetSecretTool(SecretsTool):
    name = "get_secret"
    title = "Get Secret"
    description = "Retrieve a secret value"
    params_model = GetSecretParams

    async def handle(self, params: GetSecretParams) -> dict:
        secret = await self.secrets.get_secret(params.secret_id, params.version_stage)
        return {
            "arn": secret.arn,
            "name": secret.name,
            "secretValue": secret.secret_value,
            "versionId": secret.version_id,
            "createdDate": secret.created_date,
        }


class ListSecretsTool(SecretsTool):
    name = "list_secrets"
    title = "List Secrets"
    description = "List all secrets"
    params_model = ListSecretsParams
    context_fields = ()

    async def handle(self, params: ListSecretsParams) -> dict:
        secrets = await self.secrets.list_secrets(params.max_results)
        return {
            "count": len(secrets),
            "secrets": [
                {
                    "arn": s.arn,
                    "name": s.name,
                    "description": s.description,
                    "lastChangedDate": s.last_changed_date,
                    "lastAccessedDate": s.last_accessed_date,
                    "tags": s.tags,
                }
                for s in secrets
            ],
        }


class DeleteSecretTool(SecretsTool):
    name = "delete_secret"
    title = "Delete Secret"
    description = "Delete a secret"
    params_model = DeleteSecretParams

    async def handle(self, params: DeleteSecretParams) -> dict:
        deleted = await self.secrets.delete_secret(
            params.secret_id, params.force_delete, params.recovery_window_in_days
        )
        if params.force_delete:
            message = f'Secret "{params.secret_id}" deleted immediately'
        else:
            message = (
                f'Secret "{params.secret_id}" scheduled for deletion '
                f"in {params.recovery_window_in_days} days"
            )
        return {
            "success": True,
            "arn": deleted.arn,
            "name": deleted.name,
            "deletionDate": deleted.deletion_date,
            "message": message,
        }


class DescribeSecretTool(SecretsTool):
    name = "describe_secret"
    title = "Describe Secret"
    description = "Get secret metadata"
    params_model = SecretIdParams

    async def handle(self, params: SecretIdParams) -> dict:
        d = await self.secrets.describe_secret(params.secret_id)
        return {
            "arn": d.arn,
            "name": d.name,
            "description": d.description,
            "rotationEnabled": d.rotation_enabled,
            "rotationLambdaARN": d.rotation_lambda_arn,
            "lastRotatedDate": d.last_rotated_date,
            "lastChangedDate": d.last_changed_date,
            "lastAccessedDate": d.last_accessed_date,
            "deletedDate": d.deleted_date,
            "tags": d.tags,
            "versionIdsToStages": d.version_ids_to_stages,
        }


TOOLS = (
    CreateSecretTool,
    UpdateSecretTool,
    GetSecretTool,
    ListSecretsTool,
    DeleteSecretTool,
    DescribeSecretTool,
)


def build_server(backend: SecretsManagerBackend, call_timeout: float | None = None) -> ToolServer:
    server = ToolServer("aws-secrets-manager-mcp-server", __version__, call_timeout=call_timeout)
    for tool_class in TOOLS:
        server.register(tool_class(backend))
    return server


def main() -> None:
    run_server(lambda: SecretsManagerBackend(AWSConfig.from_env()), build_server)


if __name__ == "__main__":
    main()
