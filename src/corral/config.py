"""Environment-derived settings for the manager and worker processes."""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

from corral.common.constants import DEFAULT_MAX_DISPATCH_ATTEMPTS, TIMEOUTS, NodeType
from corral.common.utils import parse_worker_addresses


class Settings(BaseSettings):
    """Application settings"""
    model_config = SettingsConfigDict(env_prefix="CORRAL_")

    node_type: NodeType = NodeType.ALL
    log_level: str = "INFO"
    json_logs: bool = True

    manager_host: str = "0.0.0.0"
    manager_port: int = 5555
    worker_host: str = "0.0.0.0"
    worker_port: int = 5556

    # Comma-separated host:port list; no service discovery
    workers: str = ""
    runtime: str = "docker"
    worker_name: str = ""

    request_timeout_sec: float = TIMEOUTS["WORKER_REQUEST"]
    dispatch_interval_sec: float = TIMEOUTS["DISPATCH_INTERVAL"]
    reconcile_interval_sec: float = TIMEOUTS["RECONCILE_INTERVAL"]
    worker_poll_interval_sec: float = TIMEOUTS["WORKER_POLL_INTERVAL"]
    stats_interval_sec: float = TIMEOUTS["STATS_INTERVAL"]
    max_dispatch_attempts: int = DEFAULT_MAX_DISPATCH_ATTEMPTS
    retry_base_delay_sec: float = TIMEOUTS["RETRY_BASE_DELAY"]
    retry_max_delay_sec: float = TIMEOUTS["RETRY_MAX_DELAY"]

    @property
    def worker_addresses(self) -> List[str]:
        return parse_worker_addresses(self.workers)

    @property
    def manager_url(self) -> str:
        host = "127.0.0.1" if self.manager_host in ("", "0.0.0.0") else self.manager_host
        return f"http://{host}:{self.manager_port}"

    @property
    def local_worker_address(self) -> str:
        host = "127.0.0.1" if self.worker_host in ("", "0.0.0.0") else self.worker_host
        return f"{host}:{self.worker_port}"
