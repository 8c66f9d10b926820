"""Integration credential reconciliation.

A credential is stored remotely as one flat, untyped value map:

    {"clientId": str, "clientSecret": str, "scopes": str, <extra keys>...}

Declared intent splits that map in two:
- a typed OAuth block (client ID, client secret, ordered scope list)
- an open-ended extra-configuration block of string/bool/number values

KEY RULES:
1. clientId, clientSecret and scopes are reserved; declaring one of them as an
   extra key is a validation error, never a silent overwrite.
2. Scopes travel as one space-joined string on the wire.
3. Only the declared extra keys are re-extracted on read. Remote keys the user
   never declared are not surfaced, so they can never show up as drift.
4. A declared key missing from the remote response keeps its declared value.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .errors import ConfigValidationError, MalformedResponseError, RemoteStatusError
from .gateway import RemoteGateway
from .models import (
    OAUTH_APP_SCHEME,
    OAUTH_AUTHENTICATION_TYPE,
    CreateCredentialRequest,
    DecryptedCredential,
    Integration,
    IntegrationCredentialsSpec,
    OAuthConfig,
)
from .state import CredentialState
from .values import ConfigValue, ExtraConfiguration, split_scopes

logger = logging.getLogger(__name__)

CLIENT_ID_KEY = "clientId"
CLIENT_SECRET_KEY = "clientSecret"
SCOPES_KEY = "scopes"
RESERVED_OAUTH_KEYS: frozenset[str] = frozenset({CLIENT_ID_KEY, CLIENT_SECRET_KEY, SCOPES_KEY})


def _declared_keys(declared: ExtraConfiguration | Mapping[str, Any]) -> list[str]:
    if isinstance(declared, ExtraConfiguration):
        return sorted(declared.declared_keys)
    return sorted(declared)


def validate_extra_configuration(
    declared: ExtraConfiguration | Mapping[str, Any] | None,
    integration: Integration | None,
) -> list[ConfigValidationError]:
    """Check declared extra configuration against reserved keys and the integration.

    Args:
        declared: Declared extra configuration, None when not specified.
        integration: Integration the credential belongs to.

    Returns:
        One error per violation; empty when the declaration is valid.
    """
    errors: list[ConfigValidationError] = []
    if not declared:
        return errors

    for key in _declared_keys(declared):
        if key in RESERVED_OAUTH_KEYS:
            errors.append(
                ConfigValidationError(
                    f"Extra configuration key '{key}' conflicts with OAuth field names. "
                    "The following keys are reserved for OAuth configuration: "
                    "clientId, clientSecret, scopes",
                    summary="Invalid extra configuration key",
                )
            )

    # Extra configuration only makes sense next to OAuth-based custom integrations;
    # built-in integrations accept it unconditionally
    if integration is not None and integration.is_custom:
        auth_type = integration.authentication_type
        if auth_type is not None and auth_type != OAUTH_AUTHENTICATION_TYPE:
            errors.append(
                ConfigValidationError(
                    "Extra configuration is not supported for custom integrations with "
                    f"authentication type '{auth_type}'. Extra configuration is only "
                    "supported for OAuth-based custom integrations.",
                    summary="Invalid extra configuration for custom integration",
                )
            )

    return errors


def resolve_scopes(oauth: OAuthConfig, integration: Integration) -> str:
    """Apply the per-integration scope rules and return the joined scope string.

    Custom integrations must be OAuth-based and take no scopes; every other
    integration requires at least one scope.

    Raises:
        ConfigValidationError: If the declared scopes break the rules.
    """
    if integration.is_custom:
        auth_type = integration.authentication_type
        if auth_type is not None and auth_type != OAUTH_AUTHENTICATION_TYPE:
            raise ConfigValidationError(
                "The 'oauth' block is specified, but the custom integration's "
                "authentication type is not 'oauth'",
                summary="Invalid authentication type",
            )
        if oauth.scopes is not None:
            raise ConfigValidationError(
                "Scopes cannot be specified for custom integrations",
                summary="Unexpected scopes section",
            )
        return ""

    if oauth.scopes is None:
        raise ConfigValidationError(
            "Scopes must be specified for this integration",
            summary="Missing scopes",
        )
    return oauth.joined_scopes


def merge_credential_values(
    oauth: OAuthConfig,
    declared: ExtraConfiguration | Mapping[str, Any] | None,
    joined_scopes: str,
) -> dict[str, Any]:
    """Build the flat value map sent to the credential write API.

    Declared extra values are converted to their natural scalar type first, so
    a declared ``"3"`` is written as the number 3.

    Raises:
        ConfigValidationError: If an extra key collides with a reserved key.
    """
    values: dict[str, Any] = {
        CLIENT_ID_KEY: oauth.client_id,
        CLIENT_SECRET_KEY: oauth.client_secret,
        SCOPES_KEY: joined_scopes,
    }

    extra = declared
    if extra is not None and not isinstance(extra, ExtraConfiguration):
        extra = ExtraConfiguration.from_declared(extra)
    if extra is None:
        return values

    for key, value in extra.values.items():
        if key in RESERVED_OAUTH_KEYS:
            raise ConfigValidationError(
                f"Extra configuration key '{key}' conflicts with OAuth field names",
                summary="Invalid extra configuration key",
            )
        values[key] = value.to_wire()
    return values


def extract_all_non_reserved(api_values: Mapping[str, Any]) -> ExtraConfiguration | None:
    """Mirror every non-reserved key of a remote value map.

    Values are typed by their decoded JSON type. Returns None when nothing but
    reserved keys is present.
    """
    values = {
        key: ConfigValue.from_wire(raw)
        for key, raw in api_values.items()
        if key not in RESERVED_OAUTH_KEYS
    }
    if not values:
        return None
    return ExtraConfiguration(values=values, declared_keys=frozenset(values))


def extract_declared_only(
    api_values: Mapping[str, Any],
    declared: ExtraConfiguration | None,
) -> ExtraConfiguration | None:
    """Re-extract exactly the declared key set from a remote value map.

    Declared keys absent from the response keep their declared value: absence
    means unchanged, not removed. Returns None when nothing was declared.
    """
    if declared is None or not declared.declared_keys:
        return None

    observed = extract_all_non_reserved(api_values)
    observed_values = observed.values if observed is not None else {}

    values = {}
    for key in sorted(declared.declared_keys):
        if key in observed_values:
            values[key] = observed_values[key]
        elif key in declared.values:
            values[key] = declared.values[key]
    return ExtraConfiguration(values=values, declared_keys=declared.declared_keys)


def read_oauth_fields(values: Mapping[str, Any]) -> tuple[str, str, list[str] | None]:
    """Pull the typed OAuth fields out of a decrypted value map.

    Returns:
        Tuple of (client_id, client_secret, scopes).

    Raises:
        MalformedResponseError: If clientId or clientSecret is missing or not a string.
    """
    client_id = values.get(CLIENT_ID_KEY)
    if not isinstance(client_id, str):
        raise MalformedResponseError(
            "Could not extract client ID from the decrypted credential values",
            summary="Error extracting client ID",
        )

    client_secret = values.get(CLIENT_SECRET_KEY)
    if not isinstance(client_secret, str):
        raise MalformedResponseError(
            "Could not extract client secret from the decrypted credential values",
            summary="Error extracting client secret",
        )

    # Scopes are optional per integration type
    joined = values.get(SCOPES_KEY)
    scopes = split_scopes(joined) if isinstance(joined, str) else None
    return client_id, client_secret, scopes


def credential_differs(spec: IntegrationCredentialsSpec, state: CredentialState) -> bool:
    """Check whether declared credentials differ from the recorded ones."""
    declared_extra = spec.extra
    recorded_extra = state.extra
    declared_wire = declared_extra.to_wire() if declared_extra is not None else None
    recorded_wire = recorded_extra.to_wire() if recorded_extra is not None else None

    return (
        spec.oauth.client_id != state.client_id
        or spec.oauth.client_secret != state.client_secret
        or spec.oauth.scopes != state.scopes
        or declared_wire != recorded_wire
    )


class CredentialReconciler:
    """Create/read/update/delete for declared integration credentials."""

    def __init__(self, gateway: RemoteGateway) -> None:
        self._gateway = gateway

    def create(self, spec: IntegrationCredentialsSpec) -> CredentialState:
        """Validate and create credentials for an integration."""
        integration = self._gateway.get_integration(spec.project_id, spec.integration_id)
        joined_scopes = self._validate(spec, integration)

        email = self._gateway.get_user_email()
        values = merge_credential_values(spec.oauth, spec.extra, joined_scopes)

        record = self._gateway.create_credential(
            spec.project_id,
            CreateCredentialRequest(
                name=email,
                values=values,
                provider=integration.type,
                scheme=OAUTH_APP_SCHEME,
                integration_id=spec.integration_id,
            ),
        )
        logger.info(
            "Integration credentials created",
            extra={
                "resource": spec.name,
                "credential_id": record.id,
                "provider": record.provider,
                "extra_keys": spec.extra.keys if spec.extra is not None else [],
            },
        )

        return CredentialState(
            name=spec.name,
            project_id=spec.project_id,
            integration_id=spec.integration_id,
            id=record.id,
            scheme=record.scheme,
            provider=record.provider,
            client_id=spec.oauth.client_id,
            client_secret=spec.oauth.client_secret,
            scopes=spec.oauth.scopes,
            **CredentialState.dump_extra(spec.extra),
        )

    def read(self, prior: CredentialState) -> CredentialState | None:
        """Refresh recorded credentials from the remote API.

        Returns:
            The refreshed record, or None if the credential no longer exists.
        """
        try:
            credential = self._gateway.get_decrypted_credential(prior.project_id, prior.id)
        except RemoteStatusError as e:
            if e.not_found:
                logger.warning(
                    "Credential no longer exists, removing from state",
                    extra={"resource": prior.name, "credential_id": prior.id},
                )
                return None
            raise

        return self._state_from_credential(
            prior.name, prior.project_id, prior.id, credential, prior.extra
        )

    def update(self, spec: IntegrationCredentialsSpec, prior: CredentialState) -> CredentialState:
        """Overwrite credential values and read them back."""
        integration = self._gateway.get_integration(spec.project_id, spec.integration_id)
        joined_scopes = self._validate(spec, integration)

        # Fails with a 404 status error if the credential vanished meanwhile
        self._gateway.get_decrypted_credential(spec.project_id, prior.id)

        email = self._gateway.get_user_email()
        values = merge_credential_values(spec.oauth, spec.extra, joined_scopes)

        self._gateway.create_credential(
            spec.project_id,
            CreateCredentialRequest(
                name=email,
                values=values,
                provider=prior.provider,
                scheme=prior.scheme,
                integration_id=spec.integration_id,
            ),
        )
        updated = self._gateway.get_decrypted_credential(spec.project_id, prior.id)
        logger.info(
            "Integration credentials updated",
            extra={"resource": spec.name, "credential_id": prior.id},
        )
        return self._state_from_credential(
            spec.name, spec.project_id, prior.id, updated, spec.extra
        )

    def delete(self, prior: CredentialState) -> None:
        self._gateway.delete_credential(prior.project_id, prior.id)
        logger.info(
            "Integration credentials deleted",
            extra={"resource": prior.name, "credential_id": prior.id},
        )

    def _validate(self, spec: IntegrationCredentialsSpec, integration: Integration) -> str:
        errors = validate_extra_configuration(spec.extra_configuration, integration)
        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise ConfigValidationError(
                "; ".join(error.detail for error in errors),
                summary="Invalid extra configuration",
            )
        return resolve_scopes(spec.oauth, integration)

    def _state_from_credential(
        self,
        name: str,
        project_id: str,
        credential_id: str,
        credential: DecryptedCredential,
        declared: ExtraConfiguration | None,
    ) -> CredentialState:
        client_id, client_secret, scopes = read_oauth_fields(credential.values)
        extra = extract_declared_only(credential.values, declared)

        remote_extra = extract_all_non_reserved(credential.values)
        if remote_extra is not None:
            tracked = declared.declared_keys if declared is not None else frozenset()
            untracked = sorted(remote_extra.declared_keys - tracked)
            if untracked:
                logger.debug(
                    "Remote credential has undeclared keys",
                    extra={"resource": name, "keys": untracked},
                )

        return CredentialState(
            name=name,
            project_id=project_id,
            integration_id=credential.integration_id,
            id=credential_id,
            scheme=credential.scheme,
            provider=credential.provider,
            client_id=client_id,
            client_secret=client_secret,
            scopes=scopes,
            **CredentialState.dump_extra(extra),
        )
