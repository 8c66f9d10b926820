"""Remote Resource Gateway for the Paragon API.

The gateway is the only component that talks HTTP. It is built once from the
operator configuration (base URL + bearer token) and handed to each resource
reconciler; it holds no mutable state after construction.

Transport is azure-core's PipelineClient with a fixed header policy. No retry
policy is installed: transport failures surface immediately as TransportError
and unexpected statuses as RemoteStatusError.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, TypeVar
from urllib.parse import quote

from azure.core import PipelineClient
from azure.core.exceptions import AzureError
from azure.core.pipeline.policies import HeadersPolicy, UserAgentPolicy
from azure.core.rest import HttpRequest, HttpResponse
from pydantic import BaseModel, ValidationError

from .config import Config
from .errors import ConfigValidationError, MalformedResponseError, RemoteStatusError, TransportError
from .models import (
    CreateCredentialRequest,
    CredentialRecord,
    DecryptedCredential,
    DeploymentRecord,
    Integration,
    WorkflowMigration,
)

logger = logging.getLogger(__name__)

USER_AGENT = "paragon-operator/0.1.0"
GENERIC_ERROR_MESSAGE = "Error occurred"

# Raised by the API when a workflow reads userSettings before a one-time
# connection was made through the Connect Portal
CONNECT_CREDENTIAL_MARKER = "CONNECT_CREDENTIAL_FIELD"
CONNECT_CREDENTIAL_DETAIL = "no ConnectCredential was supplied"
CONNECT_CREDENTIAL_REMEDIATION = (
    "Deploy failed - userSettings field was used in the workflow meaning - you MUST go to "
    "the integration -> Test Connect Portal and perform a one time connection through the "
    "connect portal wizard, then rerun this - This is a one time manual task needed to be done."
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def format_error_message(status_code: int, body: str) -> str:
    """Shape an API error body into a single human-readable message.

    Bodies follow the ``{message, meta: {errors: [{error}]}}`` envelope. The
    message is joined with every non-empty sub-error; anything unparseable
    yields a generic message.

    Args:
        status_code: HTTP status of the response.
        body: Raw response body.

    Returns:
        Error message suitable for display.
    """
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        return GENERIC_ERROR_MESSAGE
    if not isinstance(payload, dict):
        return GENERIC_ERROR_MESSAGE

    message = payload.get("message") or GENERIC_ERROR_MESSAGE
    if not isinstance(message, str):
        message = str(message)

    meta = payload.get("meta")
    errors = meta.get("errors") if isinstance(meta, dict) else None
    if isinstance(errors, list):
        details = [
            str(item["error"]) for item in errors if isinstance(item, dict) and item.get("error")
        ]
        if details:
            message = f"{message}, " + ", ".join(details)

    if (
        status_code == 400
        and CONNECT_CREDENTIAL_MARKER in message
        and CONNECT_CREDENTIAL_DETAIL in message
    ):
        return CONNECT_CREDENTIAL_REMEDIATION

    return message


def decode_token_email(access_token: str) -> str:
    """Extract the ``email`` claim from a JWT bearer token.

    The signature is not verified; the token is only read to name the
    credentials created on the user's behalf.

    Raises:
        ConfigValidationError: If the token is not a JWT or has no email claim.
    """
    summary = "Error extracting user email from access token"
    parts = access_token.split(".")
    if len(parts) != 3:
        raise ConfigValidationError("Access token is not a JWT", summary=summary)

    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except (binascii.Error, ValueError) as e:
        raise ConfigValidationError(f"Could not decode token payload: {e}", summary=summary) from e

    email = claims.get("email") if isinstance(claims, dict) else None
    if not isinstance(email, str) or not email:
        raise ConfigValidationError("Access token has no email claim", summary=summary)
    return email


class RemoteGateway:
    """Typed client for the remote deployment and credential endpoints.

    Every method performs exactly one HTTP exchange.
    """

    __slots__ = ("_access_token", "_base_url", "_client", "_timeout")

    def __init__(
        self,
        base_url: str,
        access_token: str,
        *,
        timeout_seconds: int = 30,
        transport: Any | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            base_url: API root, e.g. https://api.useparagon.com.
            access_token: Bearer token sent with every request.
            timeout_seconds: Connection and read timeout per request.
            transport: Optional azure-core transport (tests, proxies).
        """
        if not base_url:
            raise ValueError("base_url cannot be empty")
        if not access_token:
            raise ValueError("access_token cannot be empty")

        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._timeout = timeout_seconds

        policies = [
            HeadersPolicy(
                {
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                }
            ),
            UserAgentPolicy(base_user_agent=USER_AGENT),
        ]
        client_kwargs: dict[str, Any] = {"policies": policies}
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client: PipelineClient = PipelineClient(base_url=self._base_url, **client_kwargs)

    @classmethod
    def from_config(cls, config: Config) -> RemoteGateway:
        return cls(
            config.api_url,
            config.access_token,
            timeout_seconds=config.request_timeout_seconds,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    # -------------------------------------------------------------------------
    # Deployments
    # -------------------------------------------------------------------------

    def create_deployment(self, project_id: str, workflow_id: str) -> str:
        """Start a deployment of a workflow.

        Returns:
            The deployment ID assigned by the remote system.
        """
        path = f"projects/{_seg(project_id)}/workflows/{_seg(workflow_id)}/deployments"
        response = self._send("POST", path)
        self._expect(response, {201}, "Could not create workflow deployment")

        payload = self._json(response)
        deployment_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(deployment_id, str) or not deployment_id:
            raise MalformedResponseError("Deployment response has no id")

        logger.info(
            "Workflow deployment started",
            extra={
                "project_id": project_id,
                "workflow_id": workflow_id,
                "deployment_id": deployment_id,
                "status": payload.get("status"),
            },
        )
        return deployment_id

    def get_deployment(self, project_id: str, deployment_id: str) -> DeploymentRecord:
        """Read the current status of a deployment.

        Raises:
            RemoteStatusError: On any non-200 status, including 404.
        """
        path = f"projects/{_seg(project_id)}/deployments/{_seg(deployment_id)}"
        response = self._send("GET", path)
        self._expect(response, {200}, "Failed to get workflow deployment")
        return self._decode(response, DeploymentRecord)

    def delete_deployment(self, project_id: str, workflow_id: str) -> None:
        """Start undeploying a workflow. A 404 means there is nothing to undeploy."""
        path = f"projects/{_seg(project_id)}/workflows/{_seg(workflow_id)}/deployments"
        response = self._send("DELETE", path)
        if response.status_code == 404:
            logger.info(
                "Workflow deployment already gone",
                extra={"project_id": project_id, "workflow_id": workflow_id},
            )
            return
        self._expect(response, {200}, "Failed to delete workflow deployment")

    def get_latest_migration(self, project_id: str, workflow_id: str) -> WorkflowMigration | None:
        """Find the latest migration of a workflow.

        Scans every latest migration of the project and returns the first one
        whose workflow ID matches, or None.
        """
        path = f"projects/{_seg(project_id)}/workflows/migrations/latest"
        response = self._send("GET", path)
        self._expect(response, {200}, "Failed to get latest workflow migrations")

        payload = self._json(response)
        if not isinstance(payload, list):
            raise MalformedResponseError("Expected a list of workflow migrations")

        for item in payload:
            try:
                migration = WorkflowMigration.model_validate(item)
            except ValidationError as e:
                raise MalformedResponseError(f"Invalid workflow migration: {e}") from e
            if migration.workflow_id == workflow_id:
                return migration
        return None

    # -------------------------------------------------------------------------
    # Integrations and credentials
    # -------------------------------------------------------------------------

    def get_integration(self, project_id: str, integration_id: str) -> Integration:
        path = f"projects/{_seg(project_id)}/integrations/{_seg(integration_id)}"
        response = self._send("GET", path)
        self._expect(response, {200}, "Failed to get integration")
        return self._decode(response, Integration)

    def create_credential(
        self, project_id: str, request: CreateCredentialRequest
    ) -> CredentialRecord:
        """Create (or overwrite) integration credentials."""
        path = f"projects/{_seg(project_id)}/credentials"
        response = self._send("POST", path, json_body=request.to_payload())
        self._expect(response, {200, 201}, "Could not create integration credentials")
        return self._decode(response, CredentialRecord)

    def get_decrypted_credential(self, project_id: str, credential_id: str) -> DecryptedCredential:
        """Read a credential with its decrypted value map.

        Raises:
            RemoteStatusError: On any non-200 status; 404 means the credential is gone.
        """
        path = f"projects/{_seg(project_id)}/credentials/decrypted/{_seg(credential_id)}"
        response = self._send("GET", path)
        self._expect(response, {200}, "Failed to get decrypted credential")
        return self._decode(response, DecryptedCredential)

    def delete_credential(self, project_id: str, credential_id: str) -> None:
        path = f"projects/{_seg(project_id)}/credentials/{_seg(credential_id)}"
        response = self._send("DELETE", path)
        if response.status_code == 404:
            return
        self._expect(response, {200, 204}, "Failed to delete credentials")

    def get_user_email(self) -> str:
        """Return the e-mail claim of the configured bearer token."""
        return decode_token_email(self._access_token)

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _send(self, method: str, path: str, *, json_body: Any | None = None) -> HttpResponse:
        url = f"{self._base_url}/{path}"
        request = (
            HttpRequest(method, url, json=json_body)
            if json_body is not None
            else HttpRequest(method, url)
        )
        try:
            return self._client.send_request(
                request,
                connection_timeout=self._timeout,
                read_timeout=self._timeout,
            )
        except AzureError as e:
            logger.error(
                "HTTP request failed",
                extra={"method": method, "path": path, "error": str(e)},
            )
            raise TransportError(f"{method} {path}: {e}") from e

    def _expect(self, response: HttpResponse, expected: set[int], context: str) -> None:
        if response.status_code in expected:
            return
        message = format_error_message(response.status_code, _text(response))
        raise RemoteStatusError(f"{context}: {message}", response.status_code)

    def _json(self, response: HttpResponse) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Response body is not valid JSON: {e}") from e

    def _decode(self, response: HttpResponse, model: type[ModelT]) -> ModelT:
        payload = self._json(response)
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponseError(f"Invalid {model.__name__} payload: {e}") from e


def _seg(value: str) -> str:
    """Quote a single path segment."""
    return quote(value, safe="")


def _text(response: HttpResponse) -> str:
    try:
        return response.text()
    except (UnicodeDecodeError, ValueError):
        return ""
