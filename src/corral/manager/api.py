"""
Manager API Server

This module implements the FastAPI-based REST API for the manager.
It handles task submissions, task listing, and stop requests.
"""

from contextlib import asynccontextmanager
from typing import List

import structlog
from fastapi import FastAPI, Response

from corral import __version__
from corral.common.api_errors import error_response, install_error_handlers, parse_task_id
from corral.common.constants import API_ROUTES, NodeType, TaskState
from corral.common.errors import TaskNotFoundError
from corral.common.schemas import HealthResponse, Task, TaskSubmission
from .service import ManagerService


logger = structlog.get_logger(__name__)


class ManagerAPI:
    """Manager API server"""

    def __init__(self, service: ManagerService, start_background: bool = True):
        self.service = service
        self.start_background = start_background
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application"""
        app = FastAPI(
            title="Corral Manager",
            description="Corral container orchestrator - Manager API",
            version=__version__,
            lifespan=self._lifespan,
        )
        install_error_handlers(app)
        self._add_routes(app)
        return app

    def _add_routes(self, app: FastAPI) -> None:
        """Add API routes"""
        scheduler = self.service.scheduler

        @app.get(API_ROUTES["HEALTH"], response_model=HealthResponse)
        async def health_check():
            return HealthResponse(version=__version__, node_type=NodeType.MANAGER.value)

        @app.post(API_ROUTES["TASKS"], status_code=201, response_model=TaskSubmission)
        def create_task(submission: TaskSubmission):
            """Queue a new task for scheduling"""
            if submission.state != TaskState.SCHEDULED:
                return error_response(
                    400, f"new tasks must target state {TaskState.SCHEDULED.value}"
                )
            scheduler.submit_new(submission)
            logger.info("Task added to the queue", task_id=str(submission.task.id))
            return submission

        @app.get(API_ROUTES["TASKS"], response_model=List[Task])
        def list_tasks():
            return scheduler.get_all_tasks()

        @app.delete(API_ROUTES["TASKS"])
        @app.delete(API_ROUTES["TASKS"] + "/")
        def stop_task_without_id():
            logger.info("No task id found in the request")
            return error_response(400, "no task id passed in request")

        @app.delete(API_ROUTES["TASK"], status_code=204)
        def stop_task(task_id: str):
            """Queue a stop request for a scheduled task"""
            try:
                tid = parse_task_id(task_id)
            except ValueError as e:
                logger.info("Failed to parse task id", task_id=task_id)
                return error_response(400, str(e))

            try:
                submission = scheduler.request_stop(tid)
            except TaskNotFoundError as e:
                logger.info("Task not found", task_id=str(tid))
                return error_response(404, e.message)

            logger.info(
                "Added task event to stop the task",
                task_id=str(tid),
                submission_id=str(submission.id),
            )
            return Response(status_code=204)

    @asynccontextmanager
    async def _lifespan(self, _: FastAPI):
        if self.start_background:
            logger.info("Starting Corral manager API")
            self.service.start()
        try:
            yield
        finally:
            logger.info("Shutting down Corral manager API")
            self.service.stop()


def create_app(service: ManagerService, start_background: bool = True) -> FastAPI:
    """Create and configure the manager FastAPI application"""
    return ManagerAPI(service, start_background=start_background).app
