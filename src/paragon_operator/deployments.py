"""Workflow deployment lifecycle.

The remote API deploys and undeploys workflows asynchronously. A mutation call
returns immediately and the deployment then moves through a status machine:

    Deploy:   DEPLOYING   -> DEPLOYED (success) | anything else (failure)
    Undeploy: UNDEPLOYING -> UNDEPLOYED (success) | 404 (success, already reaped)
                          | anything else (failure)

DeploymentLifecycleDriver blocks on that machine with fixed-interval polling.
There is no iteration cap by default; ``poll_timeout_seconds`` opts into an
overall deadline.

WorkflowDeploymentReconciler maps declared deployments onto the driver
(create/read/update/delete). Drift is detected on read from the workflow's
latest migration: if the remote ``isActive`` flag no longer matches what was
recorded, the record is dropped so the next apply deploys again.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from .errors import PollTimeoutError, RemoteFailureState, RemoteStatusError
from .gateway import RemoteGateway
from .models import DeploymentRecord, DeploymentStatus, WorkflowDeploymentSpec
from .state import DeploymentState

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2


class DeploymentLifecycleDriver:
    """Drives a single deployment or undeployment to a terminal state.

    Synchronous: every call blocks the caller until the remote side settles,
    an error state is observed, or a transport call fails.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        poll_timeout_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the driver.

        Args:
            gateway: Remote API gateway.
            poll_interval_seconds: Fixed delay between status reads.
            poll_timeout_seconds: Overall deadline per poll loop, None for unbounded.
            sleep: Blocking sleep function.
            clock: Monotonic clock used for the deadline.
        """
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        self._gateway = gateway
        self._interval = poll_interval_seconds
        self._timeout = poll_timeout_seconds
        self._sleep = sleep
        self._clock = clock

    @property
    def poll_interval_seconds(self) -> float:
        return self._interval

    @property
    def poll_timeout_seconds(self) -> float | None:
        return self._timeout

    def start_deploy(self, project_id: str, workflow_id: str) -> str:
        """Issue the deployment call and return the new deployment ID."""
        return self._gateway.create_deployment(project_id, workflow_id)

    def await_terminal(self, project_id: str, deployment_id: str) -> DeploymentRecord:
        """Poll until the deployment leaves DEPLOYING.

        Raises:
            RemoteFailureState: If the deployment settled in a state other than DEPLOYED.
            TransportError: If a status read fails.
            RemoteStatusError: If a status read returns a non-200 status.
            PollTimeoutError: If the configured deadline elapsed.
        """
        record = self._poll(
            project_id,
            deployment_id,
            in_flight=DeploymentStatus.DEPLOYING,
            success=DeploymentStatus.DEPLOYED,
            missing_is_success=False,
        )
        # Only the undeploy direction may end without a record
        assert record is not None
        return record

    def start_undeploy(self, project_id: str, workflow_id: str) -> None:
        """Issue the undeployment call."""
        self._gateway.delete_deployment(project_id, workflow_id)

    def await_undeploy_terminal(
        self, project_id: str, deployment_id: str
    ) -> DeploymentRecord | None:
        """Poll until the deployment leaves UNDEPLOYING.

        Returns:
            The final record, or None if the deployment record was already reaped (404).

        Raises:
            RemoteFailureState: If the deployment settled in a state other than UNDEPLOYED.
        """
        return self._poll(
            project_id,
            deployment_id,
            in_flight=DeploymentStatus.UNDEPLOYING,
            success=DeploymentStatus.UNDEPLOYED,
            missing_is_success=True,
        )

    @staticmethod
    def detect_drift(current_is_active: bool, last_known_deployed: bool) -> bool:
        """Check whether the observed activity flag diverged from the recorded one."""
        return current_is_active != last_known_deployed

    def _poll(
        self,
        project_id: str,
        deployment_id: str,
        *,
        in_flight: DeploymentStatus,
        success: DeploymentStatus,
        missing_is_success: bool,
    ) -> DeploymentRecord | None:
        started = self._clock()
        reads = 0

        while True:
            reads += 1
            try:
                record = self._gateway.get_deployment(project_id, deployment_id)
            except RemoteStatusError as e:
                if missing_is_success and e.not_found:
                    logger.info(
                        "Deployment record no longer exists",
                        extra={"deployment_id": deployment_id, "reads": reads},
                    )
                    return None
                raise

            if not record.has_status(in_flight):
                if record.has_status(success):
                    logger.info(
                        "Deployment reached terminal state",
                        extra={
                            "deployment_id": deployment_id,
                            "status": record.status,
                            "reads": reads,
                        },
                    )
                    return record
                logger.error(
                    "Deployment reached failure state",
                    extra={
                        "deployment_id": deployment_id,
                        "status": record.status,
                        "expected": success.value,
                    },
                )
                raise RemoteFailureState(
                    record.status, undeploy=in_flight is DeploymentStatus.UNDEPLOYING
                )

            elapsed = self._clock() - started
            if self._timeout is not None and elapsed >= self._timeout:
                raise PollTimeoutError(
                    f"Deployment {deployment_id} still {record.status} "
                    f"after {elapsed:.0f}s ({reads} reads)"
                )

            logger.debug(
                "Deployment in progress",
                extra={"deployment_id": deployment_id, "status": record.status, "reads": reads},
            )
            self._sleep(self._interval)


class WorkflowDeploymentReconciler:
    """Create/read/update/delete for declared workflow deployments."""

    def __init__(self, gateway: RemoteGateway, driver: DeploymentLifecycleDriver) -> None:
        self._gateway = gateway
        self._driver = driver

    def create(self, spec: WorkflowDeploymentSpec) -> DeploymentState:
        """Deploy the workflow and wait for it to become active."""
        deployment_id = self._driver.start_deploy(spec.project_id, spec.workflow_id)
        self._driver.await_terminal(spec.project_id, deployment_id)
        return DeploymentState(
            name=spec.name,
            project_id=spec.project_id,
            workflow_id=spec.workflow_id,
            version=spec.version,
            id=deployment_id,
            deployed=True,
        )

    def update(self, spec: WorkflowDeploymentSpec) -> DeploymentState:
        """Redeploy the workflow; each deployment gets a fresh ID."""
        return self.create(spec)

    def read(self, prior: DeploymentState) -> DeploymentState | None:
        """Refresh a recorded deployment from the workflow's latest migration.

        Returns:
            The refreshed record, or None if the deployment disappeared or was
            undeployed out of band. No remote mutation is attempted either way.
        """
        migration = self._gateway.get_latest_migration(prior.project_id, prior.workflow_id)
        if migration is None:
            logger.info(
                "No migration found for workflow, removing from state",
                extra={"resource": prior.name, "workflow_id": prior.workflow_id},
            )
            return None

        if self._driver.detect_drift(migration.deployment.is_active, prior.deployed):
            logger.warning(
                "Workflow was undeployed outside the operator, removing from state",
                extra={
                    "resource": prior.name,
                    "workflow_id": prior.workflow_id,
                    "is_active": migration.deployment.is_active,
                },
            )
            return None

        return prior.model_copy(update={"id": migration.deployment.id})

    def delete(self, prior: DeploymentState) -> None:
        """Undeploy the workflow and wait until it is gone."""
        self._driver.start_undeploy(prior.project_id, prior.workflow_id)
        self._driver.await_undeploy_terminal(prior.project_id, prior.id)
