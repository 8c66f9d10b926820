"""Top-level reconciliation run.

One run walks the declared resources sequentially:
1. Load recorded state and the resource declaration
2. Refresh every recorded resource from the remote API (drop vanished ones)
3. Create, update or replace each declared resource
4. Delete recorded resources that are no longer declared

State is saved after every resource, so a failure halfway through a run never
loses what was already applied. A failing resource is logged and recorded on
the run result; the run continues with the next resource.

Credentials are applied before deployments (workflows may read them) and
torn down after them.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .config import Config
from .credentials import CredentialReconciler, credential_differs
from .deployments import DeploymentLifecycleDriver, WorkflowDeploymentReconciler
from .errors import ReconcileError
from .gateway import RemoteGateway
from .models import IntegrationCredentialsSpec, ResourceDeclaration, WorkflowDeploymentSpec
from .spec_loader import load_declaration
from .state import CredentialState, DeploymentState, StateDocument, StateStore

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    """Resource families handled by the reconciler."""

    CREDENTIALS = "integration_credentials"
    DEPLOYMENT = "workflow_deployment"


class Action(str, Enum):
    """What a run did to a single resource."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    NO_CHANGE = "no_change"
    DELETE = "delete"
    DROPPED = "dropped"
    REFRESHED = "refreshed"


@dataclass
class ResourceResult:
    """Outcome for one resource."""

    kind: ResourceKind
    name: str
    action: Action
    error: ReconcileError | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class RunResult:
    """Outcome of one reconciliation run."""

    command: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    resources: list[ResourceResult] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def failures(self) -> list[ResourceResult]:
        return [r for r in self.resources if not r.success]

    @property
    def success(self) -> bool:
        return not self.failures

    def count(self, action: Action) -> int:
        return sum(1 for r in self.resources if r.success and r.action == action)


class Reconciler:
    """Drives declared credentials and deployments to their declared state."""

    def __init__(
        self,
        config: Config,
        *,
        gateway: RemoteGateway | None = None,
        store: StateStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the reconciler.

        Args:
            config: Operator configuration.
            gateway: Remote gateway; built from ``config`` when omitted.
            store: State store; defaults to ``config.state_file``.
            sleep: Sleep function used while polling deployments.
            clock: Monotonic clock used for the optional poll deadline.
        """
        self._config = config
        self._gateway = gateway if gateway is not None else RemoteGateway.from_config(config)
        self._store = store if store is not None else StateStore(config.state_file)

        driver = DeploymentLifecycleDriver(
            self._gateway,
            poll_interval_seconds=config.poll_interval_seconds,
            poll_timeout_seconds=config.poll_timeout_seconds,
            sleep=sleep,
            clock=clock,
        )
        self._deployments = WorkflowDeploymentReconciler(self._gateway, driver)
        self._credentials = CredentialReconciler(self._gateway)

    @property
    def config(self) -> Config:
        return self._config

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def apply(self, declaration: ResourceDeclaration | None = None) -> RunResult:
        """Reconcile every declared resource and prune undeclared ones.

        Raises:
            SpecLoadError: If the declaration file cannot be loaded.
            StateError: If the state file cannot be read or written.
        """
        if declaration is None:
            declaration = load_declaration(self._config.spec_file)

        result = RunResult(command="apply")
        document = self._store.load()
        unreadable = self._refresh_all(document, result)

        for cred_spec in declaration.credentials:
            if (ResourceKind.CREDENTIALS, cred_spec.name) in unreadable:
                continue
            self._apply_credentials(document, cred_spec, result)

        for deploy_spec in declaration.deployments:
            if (ResourceKind.DEPLOYMENT, deploy_spec.name) in unreadable:
                continue
            self._apply_deployment(document, deploy_spec, result)

        # Unreadable records are left alone until a later run can see them
        keep_deployments = {d.name for d in declaration.deployments} | {
            name for kind, name in unreadable if kind == ResourceKind.DEPLOYMENT
        }
        for name in sorted(set(document.deployments) - keep_deployments):
            self._delete_deployment(document, document.deployments[name], result)

        keep_credentials = {c.name for c in declaration.credentials} | {
            name for kind, name in unreadable if kind == ResourceKind.CREDENTIALS
        }
        for name in sorted(set(document.credentials) - keep_credentials):
            self._delete_credentials(document, document.credentials[name], result)

        return self._finish(result)

    def refresh(self) -> RunResult:
        """Re-read every recorded resource and update state. Never mutates remotely."""
        result = RunResult(command="refresh")
        document = self._store.load()
        self._refresh_all(document, result)
        return self._finish(result)

    def destroy(self) -> RunResult:
        """Delete every recorded resource, deployments first."""
        result = RunResult(command="destroy")
        document = self._store.load()

        for name in sorted(document.deployments):
            self._delete_deployment(document, document.deployments[name], result)
        for name in sorted(document.credentials):
            self._delete_credentials(document, document.credentials[name], result)

        return self._finish(result)

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    def _refresh_all(
        self, document: StateDocument, result: RunResult
    ) -> set[tuple[ResourceKind, str]]:
        """Refresh recorded resources in place; returns the ones that failed to read."""
        unreadable: set[tuple[ResourceKind, str]] = set()

        for name in sorted(document.credentials):
            prior = document.credentials[name]
            try:
                observed = self._credentials.read(prior)
            except ReconcileError as e:
                self._record_failure(result, ResourceKind.CREDENTIALS, name, Action.REFRESHED, e)
                unreadable.add((ResourceKind.CREDENTIALS, name))
                continue
            if observed is None:
                del document.credentials[name]
                result.resources.append(
                    ResourceResult(ResourceKind.CREDENTIALS, name, Action.DROPPED)
                )
            else:
                document.credentials[name] = observed
                if result.command == "refresh":
                    result.resources.append(
                        ResourceResult(ResourceKind.CREDENTIALS, name, Action.REFRESHED)
                    )

        for name in sorted(document.deployments):
            prior_deployment = document.deployments[name]
            try:
                observed_deployment = self._deployments.read(prior_deployment)
            except ReconcileError as e:
                self._record_failure(result, ResourceKind.DEPLOYMENT, name, Action.REFRESHED, e)
                unreadable.add((ResourceKind.DEPLOYMENT, name))
                continue
            if observed_deployment is None:
                del document.deployments[name]
                result.resources.append(
                    ResourceResult(ResourceKind.DEPLOYMENT, name, Action.DROPPED)
                )
            else:
                document.deployments[name] = observed_deployment
                if result.command == "refresh":
                    result.resources.append(
                        ResourceResult(ResourceKind.DEPLOYMENT, name, Action.REFRESHED)
                    )

        self._store.save(document)
        return unreadable

    # -------------------------------------------------------------------------
    # Credentials
    # -------------------------------------------------------------------------

    def _apply_credentials(
        self, document: StateDocument, spec: IntegrationCredentialsSpec, result: RunResult
    ) -> None:
        prior = document.credentials.get(spec.name)
        action = Action.CREATE
        try:
            if prior is None:
                state = self._credentials.create(spec)
            elif (
                prior.project_id != spec.project_id or prior.integration_id != spec.integration_id
            ):
                action = Action.REPLACE
                self._credentials.delete(prior)
                del document.credentials[spec.name]
                self._store.save(document)
                state = self._credentials.create(spec)
            elif credential_differs(spec, prior):
                action = Action.UPDATE
                state = self._credentials.update(spec, prior)
            else:
                result.resources.append(
                    ResourceResult(ResourceKind.CREDENTIALS, spec.name, Action.NO_CHANGE)
                )
                return
        except ReconcileError as e:
            self._record_failure(result, ResourceKind.CREDENTIALS, spec.name, action, e)
            return

        document.credentials[spec.name] = state
        self._store.save(document)
        result.resources.append(ResourceResult(ResourceKind.CREDENTIALS, spec.name, action))

    def _delete_credentials(
        self, document: StateDocument, prior: CredentialState, result: RunResult
    ) -> None:
        try:
            self._credentials.delete(prior)
        except ReconcileError as e:
            self._record_failure(result, ResourceKind.CREDENTIALS, prior.name, Action.DELETE, e)
            return
        del document.credentials[prior.name]
        self._store.save(document)
        result.resources.append(ResourceResult(ResourceKind.CREDENTIALS, prior.name, Action.DELETE))

    # -------------------------------------------------------------------------
    # Deployments
    # -------------------------------------------------------------------------

    def _apply_deployment(
        self, document: StateDocument, spec: WorkflowDeploymentSpec, result: RunResult
    ) -> None:
        prior = document.deployments.get(spec.name)
        action = Action.CREATE
        try:
            if prior is None:
                state = self._deployments.create(spec)
            elif prior.project_id != spec.project_id or prior.workflow_id != spec.workflow_id:
                action = Action.REPLACE
                self._deployments.delete(prior)
                del document.deployments[spec.name]
                self._store.save(document)
                state = self._deployments.create(spec)
            elif prior.version != spec.version:
                action = Action.UPDATE
                state = self._deployments.update(spec)
            else:
                result.resources.append(
                    ResourceResult(ResourceKind.DEPLOYMENT, spec.name, Action.NO_CHANGE)
                )
                return
        except ReconcileError as e:
            self._record_failure(result, ResourceKind.DEPLOYMENT, spec.name, action, e)
            return

        document.deployments[spec.name] = state
        self._store.save(document)
        result.resources.append(ResourceResult(ResourceKind.DEPLOYMENT, spec.name, action))

    def _delete_deployment(
        self, document: StateDocument, prior: DeploymentState, result: RunResult
    ) -> None:
        try:
            self._deployments.delete(prior)
        except ReconcileError as e:
            self._record_failure(result, ResourceKind.DEPLOYMENT, prior.name, Action.DELETE, e)
            return
        del document.deployments[prior.name]
        self._store.save(document)
        result.resources.append(ResourceResult(ResourceKind.DEPLOYMENT, prior.name, Action.DELETE))

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def _record_failure(
        self,
        result: RunResult,
        kind: ResourceKind,
        name: str,
        action: Action,
        error: ReconcileError,
    ) -> None:
        logger.error(
            error.summary,
            extra={
                "kind": kind.value,
                "resource": name,
                "action": action.value,
                "error": error.detail,
                "error_type": type(error).__name__,
            },
        )
        result.resources.append(ResourceResult(kind, name, action, error=error))

    def _finish(self, result: RunResult) -> RunResult:
        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    def _log_result(self, result: RunResult) -> None:
        """Log run result with structured data."""
        extra: dict[str, Any] = {
            "command": result.command,
            "duration_seconds": result.duration_seconds,
            "created": result.count(Action.CREATE),
            "updated": result.count(Action.UPDATE),
            "replaced": result.count(Action.REPLACE),
            "deleted": result.count(Action.DELETE),
            "dropped": result.count(Action.DROPPED),
            "unchanged": result.count(Action.NO_CHANGE),
            "failed": len(result.failures),
        }

        if result.failures:
            extra["failed_resources"] = [f"{r.kind.value}/{r.name}" for r in result.failures]
            logger.error("Reconciliation finished with failures", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
