"""Logging and telemetry for the AI provider gateway.

Emits one structured JSON record per gateway call to stdout and, when a log
file is configured, appends it there as well. Secrets never reach the log.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("ai_gateway")


def setup_logging(log_file: Optional[str] = None, level: str = "INFO") -> None:
    """Configure the gateway logger with stdout and optional file handlers.

    Args:
        log_file: Path to an append-only log file, or None for stdout only.
        level: Logging level name.
    """
    logger.setLevel(level)

    if not logger.handlers:
        fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

        stdout_handler = logging.StreamHandler()
        stdout_handler.setFormatter(fmt)
        logger.addHandler(stdout_handler)

        if log_file:
            log_path = Path(log_file)
            os.makedirs(log_path.parent, exist_ok=True)
            file_handler = logging.FileHandler(log_path, mode="a")
            file_handler.setFormatter(fmt)
            logger.addHandler(file_handler)


def mask_secret(value: Optional[str]) -> str:
    """Render a secret as its first four characters followed by ``...``."""
    if not value:
        return "[EMPTY]"
    return "{}...".format(value[:4])


def log_call(
    *,
    request_id: str,
    call_type: str,
    service: Optional[str],
    outcome: str,
    api_format: Optional[str] = None,
    model: Optional[str] = None,
    status: Optional[int] = None,
    error: Optional[str] = None,
    duration_ms: Optional[int] = None,
    diagnostics: Optional[Dict[str, Any]] = None
) -> None:
    """Log a single gateway call.

    Args:
        request_id: Gateway-assigned request ID.
        call_type: What the call was for (analysis, response, ...).
        service: The requested service key (None if none was resolved).
        outcome: Short outcome label (e.g. "success", "provider_error").
        api_format: Wire format used for the call.
        model: The model the request targeted.
        status: Final upstream HTTP status, when a request was made.
        error: Error message if the call failed.
        duration_ms: Wall time spent in the call.
        diagnostics: Truncation / HTML conversion summary.
    """
    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "call_type": call_type,
        "service": service,
        "api_format": api_format,
        "model": model,
        "outcome": outcome,
    }

    if status is not None:
        record["status"] = status

    if error:
        record["error"] = error

    if duration_ms is not None:
        record["duration_ms"] = duration_ms

    if diagnostics:
        record["diagnostics"] = diagnostics

    if error:
        logger.warning(json.dumps(record))
    else:
        logger.info(json.dumps(record))
