"""Pydantic models for declared resources and remote API records.

These models provide:
1. Type-safe YAML parsing of the resource declaration file
2. Validation at the boundary (fail fast, fail loudly)
3. Typed views over the remote API's JSON responses
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .values import ExtraConfiguration, join_scopes

# Resource names double as state keys
VALID_RESOURCE_NAME_PATTERN = r"^[a-z][a-z0-9_-]{0,62}$"

# Only oauth_app credentials are supported by the remote API for now
OAUTH_APP_SCHEME = "oauth_app"
CUSTOM_INTEGRATION_TYPE = "custom"
OAUTH_AUTHENTICATION_TYPE = "oauth"


# =============================================================================
# Remote API Records
# =============================================================================


class DeploymentStatus(str, Enum):
    """Workflow deployment status values reported by the remote API.

    Any other value is a failure state.
    """

    DEPLOYING = "DEPLOYING"
    DEPLOYED = "DEPLOYED"
    UNDEPLOYING = "UNDEPLOYING"
    UNDEPLOYED = "UNDEPLOYED"


class DeploymentRecord(BaseModel):
    """Snapshot of a workflow deployment."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    id: str
    status: str
    is_active: bool = Field(False, alias="isActive")

    def has_status(self, status: DeploymentStatus) -> bool:
        return self.status == status.value


class WorkflowMigration(BaseModel):
    """Latest migration for a workflow, embedding its deployment."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    id: str
    workflow_id: str = Field(alias="workflowId")
    deployment: DeploymentRecord


class CustomIntegration(BaseModel):
    """Custom integration metadata."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    authentication_type: str = Field("", alias="authenticationType")


class Integration(BaseModel):
    """Integration metadata used to validate credentials."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    id: str = ""
    type: str
    custom_integration: CustomIntegration | None = Field(None, alias="customIntegration")

    @property
    def is_custom(self) -> bool:
        return self.type == CUSTOM_INTEGRATION_TYPE

    @property
    def authentication_type(self) -> str | None:
        if self.custom_integration is None:
            return None
        return self.custom_integration.authentication_type


class CreateCredentialRequest(BaseModel):
    """Payload for the credential create endpoint (also used for updates)."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    name: str
    values: dict[str, Any]
    provider: str
    scheme: str = OAUTH_APP_SCHEME
    integration_id: str = Field(alias="integrationId")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class CredentialRecord(BaseModel):
    """Response of the credential create endpoint."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    id: str
    scheme: str
    provider: str


class DecryptedCredential(BaseModel):
    """Decrypted credential including its untyped value map."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    id: str = ""
    integration_id: str = Field(alias="integrationId")
    scheme: str
    provider: str
    values: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Declared Resources
# =============================================================================


class OAuthConfig(BaseModel):
    """OAuth client credentials of an integration credential."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    client_id: Annotated[str, Field(min_length=1, alias="clientId")]
    client_secret: Annotated[str, Field(min_length=1, alias="clientSecret", repr=False)]
    scopes: list[str] | None = None

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: list[str] | None) -> list[str] | None:
        if v is not None and len(v) < 1:
            raise ValueError("scopes must contain at least one entry when specified")
        return v

    @property
    def joined_scopes(self) -> str:
        return join_scopes(self.scopes)


class IntegrationCredentialsSpec(BaseModel):
    """Declared credential bundle for an integration."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(pattern=VALID_RESOURCE_NAME_PATTERN)]
    project_id: Annotated[str, Field(min_length=1, alias="projectId")]
    integration_id: Annotated[str, Field(min_length=1, alias="integrationId")]
    oauth: OAuthConfig
    extra_configuration: dict[str, str | bool | int | float] | None = Field(
        None, alias="extraConfiguration"
    )

    @property
    def extra(self) -> ExtraConfiguration | None:
        """Typed view of the declared extra configuration."""
        return ExtraConfiguration.from_declared(self.extra_configuration)


class WorkflowDeploymentSpec(BaseModel):
    """Declared workflow deployment.

    Bumping ``version`` triggers a new deployment of the same workflow.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(pattern=VALID_RESOURCE_NAME_PATTERN)]
    project_id: Annotated[str, Field(min_length=1, alias="projectId")]
    workflow_id: Annotated[str, Field(min_length=1, alias="workflowId")]
    version: Annotated[int, Field(ge=1)] = 1


class ResourceDeclaration(BaseModel):
    """Top-level declaration file content."""

    model_config = {"extra": "ignore"}

    credentials: list[IntegrationCredentialsSpec] = Field(default_factory=list)
    deployments: list[WorkflowDeploymentSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_names(self) -> ResourceDeclaration:
        for kind, items in (("credentials", self.credentials), ("deployments", self.deployments)):
            seen: set[str] = set()
            for item in items:
                if item.name in seen:
                    raise ValueError(f"duplicate {kind} name: {item.name}")
                seen.add(item.name)
        return self

    @property
    def resource_count(self) -> int:
        return len(self.credentials) + len(self.deployments)
