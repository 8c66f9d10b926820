"""Local state storage for reconciled resources.

Observed records are persisted as a single JSON document keyed by resource
kind and name. The state file contains credential secrets: it must live on a
volume readable only by the operator.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .config import MAX_STATE_FILE_SIZE_BYTES
from .values import ConfigValue, ExtraConfiguration

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


class StateError(Exception):
    """Raised when the state file cannot be read or written."""

    pass


class DeploymentState(BaseModel):
    """Recorded workflow deployment."""

    name: str
    project_id: str
    workflow_id: str
    version: int
    id: str
    deployed: bool = True


class CredentialState(BaseModel):
    """Recorded integration credentials.

    ``declared_keys`` is the extra-configuration key set the user declared; it
    is what read reconciliation re-extracts from the remote value map.
    """

    name: str
    project_id: str
    integration_id: str
    id: str
    scheme: str
    provider: str
    client_id: str
    client_secret: str = Field(repr=False)
    scopes: list[str] | None = None
    extra_configuration: dict[str, str | bool | int | float | None] | None = None
    declared_keys: list[str] = Field(default_factory=list)

    @property
    def extra(self) -> ExtraConfiguration | None:
        """Typed view of the recorded extra configuration."""
        if not self.declared_keys:
            return None
        stored = self.extra_configuration or {}
        values = {key: ConfigValue.from_wire(raw) for key, raw in stored.items()}
        return ExtraConfiguration(values=values, declared_keys=frozenset(self.declared_keys))

    @staticmethod
    def dump_extra(extra: ExtraConfiguration | None) -> dict[str, Any]:
        """Field values for ``extra_configuration``/``declared_keys`` from a typed block."""
        if extra is None:
            return {"extra_configuration": None, "declared_keys": []}
        return {
            "extra_configuration": extra.to_wire(),
            "declared_keys": sorted(extra.declared_keys),
        }


class StateDocument(BaseModel):
    """Everything the operator has recorded."""

    version: int = STATE_FORMAT_VERSION
    credentials: dict[str, CredentialState] = Field(default_factory=dict)
    deployments: dict[str, DeploymentState] = Field(default_factory=dict)

    @property
    def resource_count(self) -> int:
        return len(self.credentials) + len(self.deployments)


class StateStore:
    """JSON file backed state store."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> StateDocument:
        """Load the state document, or an empty one if no file exists yet.

        Raises:
            StateError: If the file is unreadable, too large, or invalid.
        """
        if not self._path.exists():
            logger.info("No state file found, starting empty", extra={"path": str(self._path)})
            return StateDocument()

        try:
            file_size = self._path.stat().st_size
        except OSError as e:
            raise StateError(f"Failed to stat state file {self._path}: {e}") from e

        if file_size > MAX_STATE_FILE_SIZE_BYTES:
            raise StateError(
                f"State file exceeds maximum size of {MAX_STATE_FILE_SIZE_BYTES} bytes: "
                f"{self._path}"
            )

        try:
            content = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise StateError(f"Failed to read state file {self._path}: {e}") from e

        try:
            document = StateDocument.model_validate_json(content)
        except ValidationError as e:
            raise StateError(f"Invalid state file {self._path}: {e}") from e

        if document.version != STATE_FORMAT_VERSION:
            raise StateError(
                f"Unsupported state format version {document.version} in {self._path}"
            )
        return document

    def save(self, document: StateDocument) -> None:
        """Write the state document atomically."""
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise StateError(f"Failed to write state file {self._path}: {e}") from e

        logger.debug(
            "State saved",
            extra={"path": str(self._path), "resources": document.resource_count},
        )
