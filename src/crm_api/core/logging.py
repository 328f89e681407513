"""Loguru logging configuration.

Every record carries an ``import_id`` extra ("-" outside an import) so lines
written while validating or committing an import can be traced back to it.
Pipeline code sets it with :func:`import_context`. stderr is human readable
unless ``json_logs`` is on; with a ``log_dir`` there is a rotating general
log plus ``imports.log`` holding only import-scoped records.
"""

import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger

NO_IMPORT = "-"

_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | import={extra[import_id]} | "
    "{name}:{function}:{line} | {message}"
)


def _import_scoped(record: dict) -> bool:
    return record["extra"].get("import_id", NO_IMPORT) != NO_IMPORT


def setup_logging(log_level: str = "INFO", log_dir: str | None = None, *, json_logs: bool = False) -> None:
    """Configure Loguru sinks.

    Args:
        log_level: Minimum log level to emit.
        log_dir: Optional directory for log files.  When set, ``crm-api.log``
            (rotated every 24 hours, retained 7 days) and ``imports.log``
            (rotated at 50 MB, retained 30 days) are added.
        json_logs: Serialize stderr records as JSON lines.
    """
    level = log_level.upper()
    logger.remove()
    logger.configure(extra={"import_id": NO_IMPORT})
    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_LOG_FORMAT)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path / "crm-api.log",
            level=level,
            format=_LOG_FORMAT,
            rotation="24h",
            retention="7 days",
        )
        logger.add(
            log_path / "imports.log",
            level=level,
            format=_LOG_FORMAT,
            filter=_import_scoped,
            rotation="50 MB",
            retention="30 days",
        )


@contextmanager
def import_context(import_id: uuid.UUID | str) -> Iterator[None]:
    """Tag every record logged inside the block (including awaited calls) with an import."""
    with logger.contextualize(import_id=str(import_id)):
        yield
