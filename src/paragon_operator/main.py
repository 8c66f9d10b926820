"""Main entry point for the Paragon operator.

The operator runs one reconciliation pass per invocation: it is meant to be
scheduled (CronJob, CI pipeline) rather than to loop forever. Exit code is 0
when every resource reconciled cleanly, 1 otherwise.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

from .config import Config, ConfigurationError
from .reconciler import Reconciler
from .spec_loader import SpecLoadError
from .state import StateError

COMMANDS = ("apply", "refresh", "destroy")

# LogRecord attributes that are not structured fields
_RECORD_ATTRIBUTES = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_output: bool = True, level: int = logging.INFO) -> None:
    """Configure logging: JSON lines on stdout, or plain text for local runs."""
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the HTTP pipeline
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def run_command(command: str, config: Config, reconciler: Reconciler | None = None) -> int:
    """Run one reconciliation command.

    Args:
        command: One of ``apply``, ``refresh`` or ``destroy``.
        config: Operator configuration.
        reconciler: Prebuilt reconciler (tests); built from ``config`` when omitted.

    Returns:
        Exit code (0 for success, 1 for any failure).
    """
    logger = logging.getLogger(__name__)

    if command not in COMMANDS:
        raise ValueError(f"Unknown command '{command}'. Valid commands: {list(COMMANDS)}")

    logger.info(
        "Starting Paragon operator",
        extra={
            "command": command,
            "base_url": config.api_url,
            "spec_file": str(config.spec_file),
            "state_file": str(config.state_file),
        },
    )

    try:
        if reconciler is None:
            reconciler = Reconciler(config)
        match command:
            case "apply":
                result = reconciler.apply()
            case "refresh":
                result = reconciler.refresh()
            case _:
                result = reconciler.destroy()
    except SpecLoadError as e:
        logger.error(
            "Resource declaration loading failed",
            extra={"error": str(e), "spec_file": str(config.spec_file)},
        )
        return 1
    except StateError as e:
        logger.error(
            "State file error",
            extra={"error": str(e), "state_file": str(config.state_file)},
        )
        return 1
    except Exception as e:
        logger.exception("Operator failed unexpectedly", extra={"error": str(e)})
        return 1

    return 0 if result.success else 1


def main(command: str = "apply") -> int:
    """Run the operator with configuration from the environment.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if command not in COMMANDS:
        print(f"Unknown command '{command}'. Valid commands: {', '.join(COMMANDS)}", file=sys.stderr)
        return 2

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(json_output=config.enable_json_logging)
    return run_command(command, config)


def run() -> None:
    """Entry point for the operator container."""
    command = sys.argv[1] if len(sys.argv) > 1 else "apply"
    sys.exit(main(command))


if __name__ == "__main__":
    run()
