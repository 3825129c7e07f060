from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from typing import Any

import boto3
from botocore.config import Config
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .client import TableStoreClient
from .errors import ValidationError
from .model import ModelDefinition
from .schema import TableSchema
from .store import Boto3RemoteStore

logger = logging.getLogger(__name__)

DefaultLocalEndpoint = "http://localhost:8000"

# environment variable -> field; the first non-empty variable wins
_ENV_FIELDS: tuple[tuple[str, str], ...] = (
    ("TABLESTORE_ENDPOINT", "endpoint"),
    ("TABLESTORE_LOCAL_MODE", "use_local_mode"),
    ("TABLESTORE_LOCAL_ENDPOINT", "local_endpoint"),
    ("AWS_REGION", "region_name"),
    ("AWS_DEFAULT_REGION", "region_name"),
    ("AWS_PROFILE", "profile_name"),
    ("TABLESTORE_MAX_ATTEMPTS", "max_attempts"),
)


class ClientConfig(BaseModel):
    """Where and how to reach the store.

    ``use_local_mode`` targets ``local_endpoint`` (DynamoDB Local) and wins over
    ``endpoint``; otherwise ``endpoint`` overrides the regional endpoint.
    Credentials are left to boto3's usual resolution.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    endpoint: str | None = Field(default=None, description="Endpoint URL overriding the regional one")
    use_local_mode: bool = Field(default=False, description="Target DynamoDB Local at local_endpoint")
    local_endpoint: str = Field(default=DefaultLocalEndpoint, description="DynamoDB Local endpoint URL")
    region_name: str | None = Field(default=None, description="AWS region name")
    profile_name: str | None = Field(default=None, description="AWS shared-credentials profile")
    max_attempts: int | None = Field(default=None, ge=1, description="botocore retry attempts")

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except PydanticValidationError as err:
            raise ValidationError(f"invalid client config: {err}") from err

    @field_validator("local_endpoint")
    @classmethod
    def validate_local_endpoint(cls, v: str) -> str:
        if not v:
            raise ValueError("local_endpoint must not be empty")
        return v

    @property
    def endpoint_url(self) -> str | None:
        if self.use_local_mode:
            return self.local_endpoint
        return self.endpoint or None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientConfig:
        """Build a config from environment variables; unset or empty variables keep the defaults."""
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for variable, name in _ENV_FIELDS:
            raw = env.get(variable, "").strip()
            if raw and name not in values:
                values[name] = raw
        return cls(**values)


def create_dynamodb_client(config: ClientConfig) -> Any:
    session = boto3.session.Session(profile_name=config.profile_name, region_name=config.region_name)

    kwargs: dict[str, Any] = {}
    if config.endpoint_url:
        kwargs["endpoint_url"] = config.endpoint_url
    if config.max_attempts is not None:
        kwargs["config"] = Config(retries={"max_attempts": config.max_attempts, "mode": "standard"})

    logger.debug(
        "creating dynamodb client endpoint=%s region=%s",
        config.endpoint_url or "default",
        config.region_name,
    )
    return session.client("dynamodb", **kwargs)


def create_client(
    config: ClientConfig | None = None,
    *,
    models: Iterable[ModelDefinition[Any]] = (),
    schemas: Iterable[TableSchema] = (),
    dynamodb_client: Any | None = None,
) -> TableStoreClient:
    """Build a :class:`TableStoreClient` for ``config`` (default: :meth:`ClientConfig.from_env`).

    Pass ``dynamodb_client`` to reuse an existing boto3 client instead of creating one.
    """
    if dynamodb_client is None:
        dynamodb_client = create_dynamodb_client(config or ClientConfig.from_env())
    return TableStoreClient(Boto3RemoteStore(dynamodb_client), models=models, schemas=schemas)
