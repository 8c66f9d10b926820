"""Tests for integration credential reconciliation."""

import pytest

from paragon_mock import FakeGateway, seed_credential
from paragon_operator.credentials import (
    CredentialReconciler,
    credential_differs,
    extract_all_non_reserved,
    extract_declared_only,
    merge_credential_values,
    read_oauth_fields,
    resolve_scopes,
    validate_extra_configuration,
)
from paragon_operator.errors import ConfigValidationError, MalformedResponseError
from paragon_operator.models import Integration, IntegrationCredentialsSpec, OAuthConfig
from paragon_operator.state import CredentialState
from paragon_operator.values import ConfigValue, ExtraConfiguration


def builtin_integration() -> Integration:
    return Integration.model_validate({"id": "int-1", "type": "salesforce"})


def custom_integration(auth_type: str) -> Integration:
    return Integration.model_validate(
        {"id": "int-2", "type": "custom", "customIntegration": {"authenticationType": auth_type}}
    )


def make_spec(**overrides: object) -> IntegrationCredentialsSpec:
    data: dict = {
        "name": "salesforce",
        "projectId": "proj-1",
        "integrationId": "int-1",
        "oauth": {"clientId": "c", "clientSecret": "s", "scopes": ["a", "b"]},
    }
    data.update(overrides)
    return IntegrationCredentialsSpec.model_validate(data)


class TestValidateExtraConfiguration:
    """Tests for declared extra configuration validation."""

    @pytest.mark.parametrize("key", ["clientId", "clientSecret", "scopes"])
    def test_rejects_reserved_keys(self, key: str) -> None:
        """Test that every reserved key is rejected, whatever the integration."""
        for integration in (builtin_integration(), custom_integration("oauth")):
            errors = validate_extra_configuration({key: "x"}, integration)

            assert len(errors) == 1
            assert f"'{key}' conflicts with OAuth field names" in errors[0].detail

    def test_one_error_per_reserved_key(self) -> None:
        """Test that each clash is reported separately."""
        errors = validate_extra_configuration(
            {"clientId": "x", "scopes": "y", "region": "eu"}, builtin_integration()
        )

        assert len(errors) == 2

    def test_rejects_extra_for_custom_non_oauth(self) -> None:
        """Test that custom integrations without OAuth accept no extra configuration."""
        errors = validate_extra_configuration({"region": "eu"}, custom_integration("api_key"))

        assert len(errors) == 1
        assert "authentication type 'api_key'" in errors[0].detail

    def test_accepts_extra_for_custom_oauth(self) -> None:
        """Test that OAuth-based custom integrations accept extra configuration."""
        assert validate_extra_configuration({"region": "eu"}, custom_integration("oauth")) == []

    def test_accepts_extra_for_builtin(self) -> None:
        """Test that built-in integrations accept extra configuration."""
        assert validate_extra_configuration({"region": "eu"}, builtin_integration()) == []

    def test_empty_declaration_is_valid(self) -> None:
        """Test that no extra configuration validates cleanly, even for custom non-OAuth."""
        assert validate_extra_configuration(None, custom_integration("api_key")) == []
        assert validate_extra_configuration({}, custom_integration("api_key")) == []

    def test_accepts_typed_block(self) -> None:
        """Test that a typed block is validated by its declared keys."""
        extra = ExtraConfiguration.from_declared({"clientSecret": "x"})

        assert len(validate_extra_configuration(extra, builtin_integration())) == 1


class TestResolveScopes:
    """Tests for per-integration scope rules."""

    def test_builtin_requires_scopes(self) -> None:
        """Test that built-in integrations need scopes."""
        oauth = OAuthConfig(client_id="c", client_secret="s")

        with pytest.raises(ConfigValidationError, match="Scopes must be specified"):
            resolve_scopes(oauth, builtin_integration())

    def test_builtin_joins_scopes(self) -> None:
        """Test that scopes are joined with single spaces in order."""
        oauth = OAuthConfig(client_id="c", client_secret="s", scopes=["read", "write"])

        assert resolve_scopes(oauth, builtin_integration()) == "read write"

    def test_custom_rejects_scopes(self) -> None:
        """Test that custom integrations take no scopes."""
        oauth = OAuthConfig(client_id="c", client_secret="s", scopes=["read"])

        with pytest.raises(ConfigValidationError, match="cannot be specified"):
            resolve_scopes(oauth, custom_integration("oauth"))

    def test_custom_requires_oauth_auth_type(self) -> None:
        """Test that an OAuth block needs an OAuth-based custom integration."""
        oauth = OAuthConfig(client_id="c", client_secret="s")

        with pytest.raises(ConfigValidationError, match="authentication type is not 'oauth'"):
            resolve_scopes(oauth, custom_integration("basic"))

    def test_custom_oauth_has_empty_scopes(self) -> None:
        """Test that custom OAuth integrations send an empty scope string."""
        oauth = OAuthConfig(client_id="c", client_secret="s")

        assert resolve_scopes(oauth, custom_integration("oauth")) == ""


class TestMergeCredentialValues:
    """Tests for building the flat credential value map."""

    def test_merge_types_declared_strings(self) -> None:
        """Test that a declared "3" is written as the number 3."""
        oauth = OAuthConfig(client_id="c", client_secret="s")

        values = merge_credential_values(oauth, {"retries": "3"}, "a b")

        assert values == {"clientId": "c", "clientSecret": "s", "scopes": "a b", "retries": 3}
        assert isinstance(values["retries"], int)

    def test_merge_without_extra(self) -> None:
        """Test that only the OAuth fields are written without extra configuration."""
        oauth = OAuthConfig(client_id="c", client_secret="s")

        assert merge_credential_values(oauth, None, "") == {
            "clientId": "c",
            "clientSecret": "s",
            "scopes": "",
        }

    def test_merge_keeps_bools(self) -> None:
        """Test that declared bools and bool literals become JSON booleans."""
        oauth = OAuthConfig(client_id="c", client_secret="s")

        values = merge_credential_values(oauth, {"sandbox": True, "debug": "false"}, "x")

        assert values["sandbox"] is True
        assert values["debug"] is False

    def test_merge_keeps_block_scalar_codes(self) -> None:
        """Test that a code ending in a newline is written unchanged."""
        oauth = OAuthConfig(client_id="c", client_secret="s")

        values = merge_credential_values(oauth, {"pin": "0042\n"}, "x")

        assert values["pin"] == "0042\n"

    def test_merge_refuses_reserved_override(self) -> None:
        """Test that extra values never overwrite OAuth fields."""
        oauth = OAuthConfig(client_id="c", client_secret="s")

        with pytest.raises(ConfigValidationError):
            merge_credential_values(oauth, {"clientSecret": "other"}, "x")


class TestExtraction:
    """Tests for re-extracting extra configuration from remote values."""

    def test_extract_all_non_reserved(self) -> None:
        """Test that reserved keys are excluded and the rest mirrored."""
        extra = extract_all_non_reserved(
            {"clientId": "a", "clientSecret": "b", "scopes": "x y", "foo": "v"}
        )

        assert extra is not None
        assert extra.to_wire() == {"foo": "v"}

    def test_extract_all_non_reserved_empty(self) -> None:
        """Test that only reserved keys yields no block."""
        assert extract_all_non_reserved({"clientId": "a", "clientSecret": "b", "scopes": "x y"}) is None

    def test_extract_declared_only_ignores_undeclared(self) -> None:
        """Test that remote keys nobody declared never surface."""
        declared = ExtraConfiguration.from_declared({"region": "eu"})

        extra = extract_declared_only(
            {"clientId": "a", "region": "us", "instanceUrl": "https://x"}, declared
        )

        assert extra is not None
        assert extra.to_wire() == {"region": "us"}
        assert extra.declared_keys == frozenset({"region"})

    def test_extract_declared_only_keeps_missing_keys(self) -> None:
        """Test that a declared key absent remotely keeps its declared value."""
        declared = ExtraConfiguration.from_declared({"region": "eu", "retries": "3"})

        extra = extract_declared_only({"region": "us"}, declared)

        assert extra is not None
        assert extra.values["retries"] == ConfigValue.number(3)
        assert extra.values["region"] == ConfigValue.string("us")

    def test_extract_declared_only_nothing_declared(self) -> None:
        """Test that no declared keys yields no block."""
        assert extract_declared_only({"region": "us"}, None) is None


class TestReadOAuthFields:
    """Tests for reading OAuth fields from decrypted values."""

    def test_reads_fields(self) -> None:
        """Test that all three OAuth fields are read."""
        assert read_oauth_fields({"clientId": "c", "clientSecret": "s", "scopes": "a b"}) == (
            "c",
            "s",
            ["a", "b"],
        )

    def test_missing_scopes_is_none(self) -> None:
        """Test that a credential without scopes reads as no scopes."""
        assert read_oauth_fields({"clientId": "c", "clientSecret": "s"})[2] is None

    @pytest.mark.parametrize(
        "values",
        [
            {"clientSecret": "s"},
            {"clientId": 5, "clientSecret": "s"},
            {"clientId": "c"},
        ],
    )
    def test_missing_client_fields_fail(self, values: dict) -> None:
        """Test that missing or mistyped client fields are never defaulted."""
        with pytest.raises(MalformedResponseError):
            read_oauth_fields(values)


class TestCredentialReconciler:
    """Tests for the credential create/read/update/delete cycle."""

    def test_create_writes_merged_values(self, gateway: FakeGateway) -> None:
        """Test that create sends the merged map named after the token e-mail."""
        gateway.add_integration("int-1", "salesforce")
        reconciler = CredentialReconciler(gateway)

        state = reconciler.create(make_spec(extraConfiguration={"retries": "3"}))

        (project_id, request), = gateway.calls_to("create_credential")
        assert project_id == "proj-1"
        assert request.name == "operator@example.com"
        assert request.provider == "salesforce"
        assert request.values == {"clientId": "c", "clientSecret": "s", "scopes": "a b", "retries": 3}
        assert state.declared_keys == ["retries"]
        assert state.extra_configuration == {"retries": 3}

    def test_create_validates_before_writing(self, gateway: FakeGateway) -> None:
        """Test that invalid configuration fails without any remote write."""
        gateway.add_integration("int-1", "salesforce")
        reconciler = CredentialReconciler(gateway)

        with pytest.raises(ConfigValidationError):
            reconciler.create(make_spec(extraConfiguration={"clientId": "x"}))

        assert gateway.count("create_credential") == 0

    def test_create_reports_all_validation_errors(self, gateway: FakeGateway) -> None:
        """Test that several violations are reported together."""
        gateway.add_integration("int-1", "custom", authentication_type="api_key")
        reconciler = CredentialReconciler(gateway)

        with pytest.raises(ConfigValidationError) as exc_info:
            reconciler.create(make_spec(extraConfiguration={"scopes": "x"}))

        assert "conflicts with OAuth field names" in exc_info.value.detail
        assert "authentication type 'api_key'" in exc_info.value.detail

    def test_read_surfaces_only_declared_keys(self, gateway: FakeGateway) -> None:
        """Test that read never reports undeclared remote keys as drift."""
        gateway.add_integration("int-1", "salesforce")
        reconciler = CredentialReconciler(gateway)
        spec = make_spec(extraConfiguration={"region": "eu"})
        state = reconciler.create(spec)
        gateway.state.credentials[state.id].values["instanceUrl"] = "https://remote"

        observed = reconciler.read(state)

        assert observed is not None
        assert observed.extra_configuration == {"region": "eu"}
        assert credential_differs(spec, observed) is False

    def test_read_detects_changed_secret(self, gateway: FakeGateway) -> None:
        """Test that a secret rotated out of band shows as drift."""
        gateway.add_integration("int-1", "salesforce")
        reconciler = CredentialReconciler(gateway)
        spec = make_spec()
        state = reconciler.create(spec)
        gateway.state.credentials[state.id].values["clientSecret"] = "rotated"

        observed = reconciler.read(state)

        assert observed is not None
        assert observed.client_secret == "rotated"
        assert credential_differs(spec, observed) is True

    def test_read_missing_credential_is_none(self, gateway: FakeGateway) -> None:
        """Test that a 404 on read drops the record."""
        gateway.add_integration("int-1", "salesforce")
        reconciler = CredentialReconciler(gateway)
        state = reconciler.create(make_spec())
        gateway.state.credentials.clear()

        assert reconciler.read(state) is None

    def test_read_keeps_declared_key_missing_remotely(self, gateway: FakeGateway) -> None:
        """Test that a declared key dropped remotely keeps its recorded value."""
        gateway.add_integration("int-1", "salesforce")
        reconciler = CredentialReconciler(gateway)
        state = reconciler.create(make_spec(extraConfiguration={"retries": 3}))
        gateway.remove_credential_values(state.id, "retries")

        observed = reconciler.read(state)

        assert observed is not None
        assert observed.extra_configuration == {"retries": 3}

    def test_update_overwrites_and_reads_back(self, gateway: FakeGateway) -> None:
        """Test that update writes new values and keeps the credential ID."""
        gateway.add_integration("int-1", "salesforce")
        reconciler = CredentialReconciler(gateway)
        state = reconciler.create(make_spec())

        updated = reconciler.update(
            make_spec(oauth={"clientId": "c2", "clientSecret": "s2", "scopes": ["a"]}), state
        )

        assert updated.id == state.id
        assert updated.client_id == "c2"
        assert updated.scopes == ["a"]
        assert gateway.state.credentials[state.id].values["clientSecret"] == "s2"

    def test_update_uses_recorded_scheme_and_provider(self, gateway: FakeGateway) -> None:
        """Test that updates reuse the recorded scheme and provider."""
        gateway.add_integration("int-1", "salesforce")
        seed_credential(
            gateway, "cred-9", "int-1", {"clientId": "c", "clientSecret": "s"}, provider="sfdc-legacy"
        )
        state = CredentialState(
            name="salesforce",
            project_id="proj-1",
            integration_id="int-1",
            id="cred-9",
            scheme="oauth_app",
            provider="sfdc-legacy",
            client_id="c",
            client_secret="s",
        )

        updated = CredentialReconciler(gateway).update(make_spec(), state)

        (_, request), = gateway.calls_to("create_credential")
        assert request.provider == "sfdc-legacy"
        assert request.scheme == "oauth_app"
        assert updated.id == "cred-9"
        assert updated.scopes == ["a", "b"]

    def test_delete_removes_credential(self, gateway: FakeGateway) -> None:
        """Test that delete removes the remote credential."""
        gateway.add_integration("int-1", "salesforce")
        reconciler = CredentialReconciler(gateway)
        state = reconciler.create(make_spec())

        reconciler.delete(state)

        assert gateway.state.credentials == {}
