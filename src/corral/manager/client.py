"""HTTP client the manager uses to talk to workers."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests
import structlog
from pydantic import TypeAdapter, ValidationError

from corral.common.constants import API_ROUTES, TIMEOUTS
from corral.common.errors import WorkerResponseError, WorkerUnavailableError
from corral.common.schemas import Task, TaskSubmission
from corral.common.utils import worker_url


logger = structlog.get_logger(__name__)

_TASK_LIST = TypeAdapter(List[Task])


def _error_body(response: requests.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"message": response.text[:200]}
    return body if isinstance(body, dict) else {"message": str(body)[:200]}


class WorkerClient:
    """Bounded-timeout calls against a worker's task endpoints"""

    def __init__(self, timeout: float = TIMEOUTS["WORKER_REQUEST"]):
        self.timeout = timeout

    def submit(self, address: str, submission: TaskSubmission) -> Optional[TaskSubmission]:
        """POST a submission; returns the worker's acknowledgement when it decodes."""
        url = worker_url(address, API_ROUTES["TASKS"])
        try:
            response = requests.post(
                url,
                data=submission.model_dump_json(),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise WorkerUnavailableError(address, str(exc)) from exc

        if response.status_code != 201:
            raise WorkerResponseError(address, response.status_code, _error_body(response))

        try:
            return TaskSubmission.model_validate_json(response.content)
        except ValidationError as exc:
            logger.warning("Failed to decode acknowledgement", worker=address, error=str(exc))
            return None

    def list_tasks(self, address: str) -> List[Task]:
        url = worker_url(address, API_ROUTES["TASKS"])
        try:
            response = requests.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise WorkerUnavailableError(address, str(exc)) from exc

        if response.status_code != 200:
            raise WorkerResponseError(address, response.status_code, _error_body(response))

        try:
            return _TASK_LIST.validate_json(response.content)
        except ValidationError as exc:
            raise WorkerResponseError(
                address, response.status_code, {"message": f"invalid task list: {exc}"}
            ) from exc
