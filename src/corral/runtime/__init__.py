"""
Container runtime drivers.

The worker engine only depends on the `RuntimeDriver` contract; drivers are
looked up by name so the CLI can pick one at start-up.
"""

import importlib
from typing import Callable, Dict

from .base import EchoDriver, RuntimeDriver


def _docker_driver() -> RuntimeDriver:
    module = importlib.import_module("corral.runtime.docker_driver")
    return module.DockerDriver()


DRIVER_REGISTRY: Dict[str, Callable[[], RuntimeDriver]] = {
    "docker": _docker_driver,
    "echo": EchoDriver,
}


def create_driver(name: str) -> RuntimeDriver:
    """Instantiate the runtime driver registered under ``name``."""
    factory = DRIVER_REGISTRY.get((name or "").strip().lower())
    if factory is None:
        raise ValueError(f"Unknown runtime driver: {name}")
    return factory()


__all__ = ["DRIVER_REGISTRY", "EchoDriver", "RuntimeDriver", "create_driver"]
