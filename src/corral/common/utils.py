"""
Utility functions used throughout the Corral system.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

import structlog
import yaml


def setup_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """Setup structured logging for the application"""

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_worker_addresses(raw: str) -> List[str]:
    """Split a comma-separated ``host:port`` list, dropping blanks."""
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def worker_url(address: str, path: str) -> str:
    """Build the URL for ``path`` on a worker given as ``host:port``."""
    if address.startswith(("http://", "https://")):
        base = address.rstrip("/")
    else:
        base = f"http://{address.rstrip('/')}"
    return f"{base}/{path.lstrip('/')}"


def load_task_file(file_path: str) -> Dict[str, Any]:
    """Load a task or submission document from a YAML or JSON file"""
    path = Path(file_path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ValueError(f"Task file not found: {file_path}")

    if path.suffix.lower() == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON task file: {e}")
    else:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML task file: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"Task file must contain a mapping: {file_path}")
    return data
