"""
Docker runtime driver.

Runs each task as one Docker container through the Docker Engine API. Every
exposed port is published to a random host port; the resulting bindings are
reported back in the ExecutionResult. Container output is relayed into the
worker log while the container runs.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Optional

import docker
import requests
import structlog
from docker.errors import DockerException

from corral.common.constants import RestartPolicy, RuntimeAction
from corral.common.schemas import ExecutionResult, Task
from .base import RuntimeDriver


logger = structlog.get_logger(__name__)


def container_options(task: Task) -> Dict[str, Any]:
    """Translate a task's resource requests into ``containers.create`` kwargs."""
    options: Dict[str, Any] = {
        "detach": True,
        "tty": False,
        "publish_all_ports": True,
    }
    if task.name:
        options["name"] = task.name
    if task.memory:
        options["mem_limit"] = task.memory
    if task.cpu:
        options["nano_cpus"] = int(task.cpu * 10**9)
    if task.exposed_ports:
        options["ports"] = {port: None for port in task.exposed_ports}

    policy = RestartPolicy(task.restart_policy)
    if policy is RestartPolicy.ON_FAILURE:
        options["restart_policy"] = {"Name": policy.value, "MaximumRetryCount": 0}
    elif policy is not RestartPolicy.NONE:
        options["restart_policy"] = {"Name": policy.value}
    return options


def host_bindings(ports: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Flatten Docker's port map into ``{"80/tcp": "32768"}``."""
    bindings: Dict[str, str] = {}
    for container_port, published in (ports or {}).items():
        if not published:
            continue
        host_port = published[0].get("HostPort")
        if host_port:
            bindings[container_port] = str(host_port)
    return bindings


def forward_logs(container) -> int:
    """Relay a container's stdout and stderr into the log until it exits.

    Returns the number of lines forwarded.
    """
    forwarded = 0
    try:
        for chunk in container.logs(stream=True, follow=True, stdout=True, stderr=True):
            for line in chunk.decode("utf-8", errors="replace").splitlines():
                if line:
                    logger.info("Container output", container_id=container.id, line=line)
                    forwarded += 1
    except (DockerException, requests.RequestException) as e:
        logger.warning("Stopped following container logs", container_id=container.id, error=str(e))
    return forwarded


class DockerDriver(RuntimeDriver):
    """Runtime driver backed by the local Docker daemon"""

    name = "docker"

    def __init__(
        self,
        client: Optional[docker.DockerClient] = None,
        timeout: int = 60,
        follow_logs: bool = True,
    ):
        self._client = client
        self._timeout = timeout
        self.follow_logs = follow_logs
        self._lock = threading.Lock()

    @property
    def client(self) -> docker.DockerClient:
        with self._lock:
            if self._client is None:
                self._client = docker.from_env(timeout=self._timeout)
            return self._client

    def run(self, task: Task) -> ExecutionResult:
        try:
            logger.info("Pulling image", task_id=str(task.id), image=task.image)
            self.client.images.pull(task.image)
        except DockerException as e:
            return ExecutionResult.failure(
                f"error pulling image {task.image!r}: {e}", action=RuntimeAction.START
            )

        try:
            container = self.client.containers.create(task.image, **container_options(task))
        except DockerException as e:
            return ExecutionResult.failure(
                f"error creating container for image {task.image!r}: {e}", action=RuntimeAction.START
            )

        try:
            container.start()
            container.reload()
        except DockerException as e:
            self._discard(container)
            return ExecutionResult.failure(
                f"error starting container {container.id!r}: {e}", action=RuntimeAction.START
            )

        if self.follow_logs:
            threading.Thread(
                target=forward_logs,
                args=(container,),
                name=f"logs-{container.id[:12]}",
                daemon=True,
            ).start()

        logger.info("Container started", task_id=str(task.id), container_id=container.id)
        return ExecutionResult(
            action=RuntimeAction.START,
            container_id=container.id,
            port_bindings=host_bindings(container.ports),
        )

    def _discard(self, container) -> None:
        try:
            container.remove(force=True)
        except DockerException as e:
            logger.warning(
                "Failed to remove container after start error",
                container_id=container.id,
                error=str(e),
            )

    def stop(self, container_id: str) -> ExecutionResult:
        try:
            container = self.client.containers.get(container_id)
            container.stop()
        except DockerException as e:
            return ExecutionResult.failure(
                f"error stopping container {container_id!r}: {e}", action=RuntimeAction.STOP
            )

        try:
            container.remove()
        except DockerException as e:
            return ExecutionResult.failure(
                f"error removing container {container_id!r}: {e}", action=RuntimeAction.STOP
            )

        logger.info("Container stopped and removed", container_id=container_id)
        return ExecutionResult(action=RuntimeAction.STOP, container_id=container_id)

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
