"""
AWS Secrets Manager backend.

One boto3 client is created at startup and reused for every call; boto3
clients are thread-safe, and each blocking SDK call runs in a worker thread
via ``asyncio.to_thread`` so the event loop keeps serving other requests.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from mcp_adapters.backends.base import Backend
from mcp_adapters.config import build_config, env_str
from mcp_adapters.errors import CONNECTION_ERROR, SecretsManagerError

logger = logging.getLogger(__name__)


class AWSConfig(BaseModel):
    region: str = "us-east-1"
    access_key_id: str | None = None
    secret_access_key: str | None = None
    profile: str | None = None

    @classmethod
    def from_env(cls) -> "AWSConfig":
        return build_config(
            cls,
            region=env_str("AWS_REGION"),
            access_key_id=env_str("AWS_ACCESS_KEY_ID"),
            secret_access_key=env_str("AWS_SECRET_ACCESS_KEY"),
            profile=env_str("AWS_PROFILE"),
        )


@dataclass
class SecretRef:
    arn: str
    name: str
    version_id: str | None = None


@dataclass
class SecretValue:
    arn: str
    name: str
    secret_value: str | None
    version_id: str | None = None
    created_date: dt.datetime | None = None


@dataclass
class SecretSummary:
    arn: str
    name: str
    description: str | None = None
    last_changed_date: dt.datetime | None = None
    last_accessed_date: dt.datetime | None = None
    tags: dict[str, str] | None = None


@dataclass
class DeletedSecret:
    arn: str
    name: str
    deletion_date: dt.datetime | None = None


@dataclass
class SecretDescription:
    arn: str
    name: str
    description: str | None = None
    rotation_enabled: bool | None = None
    rotation_lambda_arn: str | None = None
    last_rotated_date: dt.datetime | None = None
    last_changed_date: dt.datetime | None = None
    last_accessed_date: dt.datetime | None = None
    deleted_date: dt.datetime | None = None
    tags: dict[str, str] | None = None
    version_ids_to_stages: dict[str, list[str]] = field(default_factory=dict)


def flatten_tags(tags: list[dict] | None) -> dict[str, str] | None:
    """[{"Key": k, "Value": v}, ...] → {k: v}, dropping incomplete entries."""
    if tags is None:
        return None
    return {t["Key"]: t["Value"] for t in tags if t.get("Key") and t.get("Value")}


def create_client(config: AWSConfig) -> Any:
    if config.profile:
        session = boto3.Session(profile_name=config.profile, region_name=config.region)
    elif config.access_key_id and config.secret_access_key:
        session = boto3.Session(
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
        )
    else:
        # Default credential chain (env, shared config, instance role)
        session = boto3.Session(region_name=config.region)
    return session.client("secretsmanager")


class SecretsManagerBackend(Backend):
    display_name = "AWS Secrets Manager"

    def __init__(self, config: AWSConfig, client: Any = None):
        self.config = config
        self.client = client if client is not None else create_client(config)

    async def _call(self, action: str, secret: str | None, fn: Callable[..., dict], **kwargs: Any) -> dict:
        """Run one SDK call off the loop and classify its failure."""
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except ClientError as e:
            raise self._classify(action, secret, e) from e
        except BotoCoreError as e:
            raise SecretsManagerError(
                f"Failed to {action} secret: {e}", CONNECTION_ERROR, cause=e
            ) from e

    @staticmethod
    def _classify(action: str, secret: str | None, error: ClientError) -> SecretsManagerError:
        info = error.response.get("Error", {})
        code = info.get("Code", "")
        message = info.get("Message") or str(error)
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

        if code == "ResourceNotFoundException":
            return SecretsManagerError(
                f'Secret "{secret}" not found', "RESOURCE_NOT_FOUND", status_code=status, cause=error
            )
        if code == "ResourceExistsException":
            return SecretsManagerError(
                f'Secret with name "{secret}" already exists', "RESOURCE_EXISTS", status_code=status, cause=error
            )
        if code == "InvalidRequestException":
            return SecretsManagerError(
                f"Invalid request: {message}", "INVALID_REQUEST", status_code=status, cause=error
            )
        return SecretsManagerError(
            f"Failed to {action} secret: {message}",
            f"{action.upper()}_FAILED",
            detail=code or None,
            status_code=status,
            cause=error,
        )

    async def create_secret(
        self,
        name: str,
        secret_value: str,
        description: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> SecretRef:
        kwargs: dict[str, Any] = {"Name": name, "SecretString": secret_value}
        if description is not None:
            kwargs["Description"] = description
        if tags:
            kwargs["Tags"] = [{"Key": k, "Value": v} for k, v in tags.items()]

        response = await self._call("create", name, self.client.create_secret, **kwargs)
        return SecretRef(arn=response["ARN"], name=response["Name"], version_id=response.get("VersionId"))

    async def update_secret(self, secret_id: str, secret_value: str) -> SecretRef:
        response = await self._call(
            "update", secret_id, self.client.update_secret,
            SecretId=secret_id, SecretString=secret_value,
        )
        return SecretRef(arn=response["ARN"], name=response["Name"], version_id=response.get("VersionId"))

    async def get_secret(self, secret_id: str, version_stage: str = "AWSCURRENT") -> SecretValue:
        response = await self._call(
            "get", secret_id, self.client.get_secret_value,
            SecretId=secret_id, VersionStage=version_stage,
        )
        return SecretValue(
            arn=response["ARN"],
            name=response["Name"],
            secret_value=response.get("SecretString"),
            version_id=response.get("VersionId"),
            created_date=response.get("CreatedDate"),
        )

    async def list_secrets(self, max_results: int | None = None) -> list[SecretSummary]:
        kwargs = {"MaxResults": max_results} if max_results is not None else {}
        response = await self._call("list", None, self.client.list_secrets, **kwargs)
        return [
            SecretSummary(
                arn=item["ARN"],
                name=item["Name"],
                description=item.get("Description"),
                last_changed_date=item.get("LastChangedDate"),
                last_accessed_date=item.get("LastAccessedDate"),
                tags=flatten_tags(item.get("Tags")),
            )
            for item in response.get("SecretList", [])
        ]

    async def delete_secret(
        self,
        secret_id: str,
        force_delete: bool = False,
        recovery_window_in_days: int = 30,
    ) -> DeletedSecret:
        kwargs: dict[str, Any] = {"SecretId": secret_id}
        if force_delete:
            kwargs["ForceDeleteWithoutRecovery"] = True
        else:
            kwargs["RecoveryWindowInDays"] = recovery_window_in_days

        response = await self._call("delete", secret_id, self.client.delete_secret, **kwargs)
        return DeletedSecret(
            arn=response["ARN"], name=response["Name"], deletion_date=response.get("DeletionDate")
        )

    async def describe_secret(self, secret_id: str) -> SecretDescription:
        response = await self._call("describe", secret_id, self.client.describe_secret, SecretId=secret_id)
        return SecretDescription(
            arn=response["ARN"],
            name=response["Name"],
            description=response.get("Description"),
            rotation_enabled=response.get("RotationEnabled"),
            rotation_lambda_arn=response.get("RotationLambdaARN"),
            last_rotated_date=response.get("LastRotatedDate"),
            last_changed_date=response.get("LastChangedDate"),
            last_accessed_date=response.get("LastAccessedDate"),
            deleted_date=response.get("DeletedDate"),
            tags=flatten_tags(response.get("Tags")),
            version_ids_to_stages=response.get("VersionIdsToStages", {}),
        )

    async def test_connection(self) -> bool:
        try:
            await asyncio.to_thread(self.client.list_secrets, MaxResults=1)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Secrets Manager probe failed: {e}")
            return False

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            close()
