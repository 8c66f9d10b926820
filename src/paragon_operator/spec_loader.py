"""Resource declaration loading with validation.

SECURITY: The declaration file carries OAuth client secrets. Its size is
checked before reading and it is parsed with yaml.safe_load only.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import ResourceDeclaration

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when declaration loading or validation fails."""

    pass


def load_declaration(path: Path) -> ResourceDeclaration:
    """Load and validate the resource declaration from YAML.

    Both a flat document (``credentials``/``deployments`` at the top level)
    and a Kubernetes-style wrapper with ``apiVersion`` and ``spec`` are
    accepted.

    Args:
        path: Path to the declaration file.

    Returns:
        Validated declaration.

    Raises:
        SpecLoadError: If the file cannot be loaded or fails validation.
    """
    if not path.exists():
        raise SpecLoadError(f"Declaration file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat declaration file {path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Declaration file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read declaration file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    # An empty file declares nothing
    if raw_data is None:
        raw_data = {}

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Declaration file must contain a YAML mapping: {path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec") or {}
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {path}")
    else:
        spec_data = raw_data

    try:
        declaration = ResourceDeclaration.model_validate(spec_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info(
        "Loaded resource declaration from %s",
        path,
        extra={
            "credentials": len(declaration.credentials),
            "deployments": len(declaration.deployments),
        },
    )
    return declaration
