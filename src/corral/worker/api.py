"""
Worker API Server

This module implements the FastAPI-based REST API of a worker. It accepts
submissions from the manager, exposes the worker's task registry, and serves
host statistics.
"""

import threading
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import FastAPI, Response

from corral import __version__
from corral.common.api_errors import error_response, install_error_handlers, parse_task_id
from corral.common.constants import API_ROUTES, SUBMITTABLE_STATES, NodeType
from corral.common.schemas import HealthResponse, Stats, Task, TaskSubmission
from .engine import WorkerEngine
from .stats import StatsCollector


logger = structlog.get_logger(__name__)


class WorkerAPI:
    """Worker API server"""

    def __init__(
        self,
        engine: WorkerEngine,
        stats: Optional[StatsCollector] = None,
        start_background: bool = True,
    ):
        self.engine = engine
        self.stats = stats if stats is not None else StatsCollector(lambda: engine.task_count)
        self.start_background = start_background
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application"""
        app = FastAPI(
            title="Corral Worker",
            description="Corral container orchestrator - Worker API",
            version=__version__,
            lifespan=self._lifespan,
        )
        install_error_handlers(app)
        self._add_routes(app)
        return app

    def _add_routes(self, app: FastAPI) -> None:
        """Add API routes"""

        @app.get(API_ROUTES["HEALTH"], response_model=HealthResponse)
        async def health_check():
            return HealthResponse(version=__version__, node_type=NodeType.WORKER.value)

        @app.post(API_ROUTES["TASKS"], status_code=201, response_model=TaskSubmission)
        def start_task(submission: TaskSubmission):
            """Queue a submission for the engine"""
            if submission.state not in SUBMITTABLE_STATES:
                return error_response(
                    400, f"unsupported target state: {submission.state.value}"
                )
            self.engine.enqueue(submission)
            logger.info("Added task", task_id=str(submission.task.id))
            return submission

        @app.get(API_ROUTES["TASKS"], response_model=List[Task])
        def get_tasks():
            return self.engine.query()

        @app.delete(API_ROUTES["TASKS"])
        @app.delete(API_ROUTES["TASKS"] + "/")
        def stop_task_without_id():
            logger.info("No task id passed in request")
            return error_response(400, "no task id passed in request")

        @app.delete(API_ROUTES["TASK"], status_code=204)
        def stop_task(task_id: str):
            """Queue a stop request for a task this worker owns"""
            try:
                tid = parse_task_id(task_id)
            except ValueError as e:
                logger.info("Failed to parse task id", task_id=task_id)
                return error_response(400, str(e))

            task = self.engine.get_task(tid)
            if task is None:
                logger.info("Task not found", task_id=str(tid))
                return error_response(404, f"task {tid} not found")

            self.engine.enqueue(TaskSubmission.stop_request(task))
            logger.info("Added stop request", task_id=str(tid), container_id=task.container_id)
            return Response(status_code=204)

        @app.get(API_ROUTES["STATS"], response_model=Stats)
        def get_stats():
            return self.stats.latest

    @asynccontextmanager
    async def _lifespan(self, _: FastAPI):
        if self.start_background:
            self._start_loops()
        try:
            yield
        finally:
            self._stop_loops()

    def _start_loops(self) -> None:
        logger.info("Starting worker loops", worker=self.engine.name)
        self._stop.clear()
        self._threads = [
            threading.Thread(
                target=self.engine.run_forever, args=(self._stop,), name="worker-engine", daemon=True
            ),
            threading.Thread(
                target=self.stats.run_forever, args=(self._stop,), name="worker-stats", daemon=True
            ),
        ]
        for thread in self._threads:
            thread.start()

    def _stop_loops(self) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=5)
        self._threads = []
        self.engine.driver.close()
        logger.info("Worker loops stopped", worker=self.engine.name)


def create_app(engine: WorkerEngine, start_background: bool = True) -> FastAPI:
    """Create and configure the worker FastAPI application"""
    return WorkerAPI(engine, start_background=start_background).app
