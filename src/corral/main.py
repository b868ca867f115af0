"""
Corral Main Entry Point

This module serves as the main entry point for Corral.
It starts a manager, a worker, or both, and offers small client commands for
talking to a running manager.
"""

import sys
import threading
from typing import List, Optional

import requests
import typer
import uvicorn
from pydantic import ValidationError

from corral.common.constants import API_ROUTES, NodeType, TaskState
from corral.common.schemas import Task, TaskSubmission
from corral.common.utils import load_task_file, setup_logging
from corral.config import Settings
from corral.manager.api import create_app as create_manager_app
from corral.manager.client import WorkerClient
from corral.manager.service import ManagerService
from corral.runtime import create_driver
from corral.worker.api import WorkerAPI
from corral.worker.engine import WorkerEngine
from corral.worker.stats import StatsCollector


app = typer.Typer(help="Corral - minimal container orchestrator")
settings = Settings()


@app.command()
def start(
    node_type: Optional[str] = typer.Option(
        None,
        "--node-type",
        "-t",
        help="Node type: manager, worker or all"
    ),
    port: Optional[int] = typer.Option(
        None,
        "--port",
        "-p",
        help="Port to run on (manager port for 'all')"
    ),
    workers: Optional[List[str]] = typer.Option(
        None,
        "--worker",
        "-w",
        help="Worker address host:port (repeatable)"
    ),
    runtime: Optional[str] = typer.Option(
        None,
        "--runtime",
        "-r",
        help="Runtime driver: docker or echo"
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level: DEBUG, INFO, WARNING, ERROR"
    ),
) -> None:
    """Start a Corral manager, worker, or both"""

    # Override settings with CLI args
    if node_type:
        try:
            settings.node_type = NodeType(node_type.upper())
        except ValueError:
            typer.echo(f"Invalid node type: {node_type}")
            raise typer.Exit(1)

    if workers:
        settings.workers = ",".join(workers)

    if runtime:
        settings.runtime = runtime

    if log_level:
        settings.log_level = log_level.upper()

    if port:
        if settings.node_type == NodeType.WORKER:
            settings.worker_port = port
        else:
            settings.manager_port = port

    setup_logging(settings.log_level, settings.json_logs)

    if settings.node_type == NodeType.MANAGER:
        start_manager()
    elif settings.node_type == NodeType.WORKER:
        start_worker()
    else:
        start_all()


def build_worker_api() -> WorkerAPI:
    try:
        driver = create_driver(settings.runtime)
    except ValueError as e:
        typer.echo(str(e))
        raise typer.Exit(1)
    engine = WorkerEngine(
        driver,
        name=settings.worker_name or None,
        poll_interval=settings.worker_poll_interval_sec,
    )
    stats = StatsCollector(lambda: engine.task_count, interval=settings.stats_interval_sec)
    return WorkerAPI(engine, stats=stats)


def build_manager_service(workers: List[str]) -> ManagerService:
    return ManagerService(
        workers,
        client=WorkerClient(timeout=settings.request_timeout_sec),
        dispatch_interval=settings.dispatch_interval_sec,
        reconcile_interval=settings.reconcile_interval_sec,
        max_dispatch_attempts=settings.max_dispatch_attempts,
        retry_base_delay=settings.retry_base_delay_sec,
        retry_max_delay=settings.retry_max_delay_sec,
    )


def start_manager(workers: Optional[List[str]] = None) -> None:
    """Start the manager node"""
    workers = workers or settings.worker_addresses
    if not workers:
        typer.echo("No workers configured; set CORRAL_WORKERS or pass --worker")
        raise typer.Exit(1)

    typer.echo(f"Starting Corral manager on {settings.manager_host}:{settings.manager_port}")
    manager_app = create_manager_app(build_manager_service(workers))
    uvicorn.run(
        manager_app,
        host=settings.manager_host,
        port=settings.manager_port,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


def start_worker() -> None:
    """Start the worker node"""
    worker_api = build_worker_api()
    typer.echo(
        f"Starting Corral worker {worker_api.engine.name} on "
        f"{settings.worker_host}:{settings.worker_port}"
    )
    uvicorn.run(
        worker_api.app,
        host=settings.worker_host,
        port=settings.worker_port,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


def start_all() -> None:
    """Start one worker in the background and a manager that targets it"""
    worker_api = build_worker_api()
    worker_server = uvicorn.Server(
        uvicorn.Config(
            worker_api.app,
            host=settings.worker_host,
            port=settings.worker_port,
            log_level=settings.log_level.lower(),
        )
    )
    worker_thread = threading.Thread(target=worker_server.run, name="worker-server", daemon=True)
    worker_thread.start()
    typer.echo(f"Started Corral worker on {settings.worker_host}:{settings.worker_port}")

    try:
        start_manager(settings.worker_addresses or [settings.local_worker_address])
    finally:
        worker_server.should_exit = True
        worker_thread.join(timeout=10)


def _manager_url(manager: Optional[str]) -> str:
    url = manager or settings.manager_url
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    return url.rstrip("/")


def _report_error(response: requests.Response) -> None:
    try:
        body = response.json()
    except ValueError:
        body = None
    message = body.get("message", response.text) if isinstance(body, dict) else response.text
    typer.echo(f"Request failed ({response.status_code}): {message}")
    raise typer.Exit(1)


@app.command()
def submit(
    task_file: str = typer.Argument(..., help="YAML or JSON file describing a task or submission"),
    manager: Optional[str] = typer.Option(None, "--manager", "-m", help="Manager address"),
) -> None:
    """Submit a task to the manager"""
    try:
        data = load_task_file(task_file)
        if "task" in data:
            submission = TaskSubmission.model_validate(data)
        else:
            submission = TaskSubmission(state=TaskState.SCHEDULED, task=Task.model_validate(data))
    except (ValueError, ValidationError) as e:
        typer.echo(f"Invalid task file: {e}")
        raise typer.Exit(1)

    try:
        response = requests.post(
            f"{_manager_url(manager)}{API_ROUTES['TASKS']}",
            data=submission.model_dump_json(),
            headers={"Content-Type": "application/json"},
            timeout=settings.request_timeout_sec,
        )
    except requests.RequestException as e:
        typer.echo(f"Failed to reach manager: {e}")
        raise typer.Exit(1)

    if response.status_code != 201:
        _report_error(response)
    typer.echo(f"Submitted task {submission.task.id}")


@app.command()
def tasks(
    manager: Optional[str] = typer.Option(None, "--manager", "-m", help="Manager address"),
) -> None:
    """List the manager's tasks"""
    try:
        response = requests.get(
            f"{_manager_url(manager)}{API_ROUTES['TASKS']}", timeout=settings.request_timeout_sec
        )
    except requests.RequestException as e:
        typer.echo(f"Failed to reach manager: {e}")
        raise typer.Exit(1)

    if response.status_code != 200:
        _report_error(response)

    typer.echo(f"{'ID':<38}{'NAME':<24}{'STATE':<12}CONTAINER")
    for item in response.json():
        task = Task.model_validate(item)
        container = (task.container_id or "")[:12]
        typer.echo(f"{str(task.id):<38}{task.name[:23]:<24}{task.state.value:<12}{container}")


@app.command()
def stop(
    task_id: str = typer.Argument(..., help="Task id to stop"),
    manager: Optional[str] = typer.Option(None, "--manager", "-m", help="Manager address"),
) -> None:
    """Ask the manager to stop a task"""
    try:
        response = requests.delete(
            f"{_manager_url(manager)}{API_ROUTES['TASKS']}/{task_id}",
            timeout=settings.request_timeout_sec,
        )
    except requests.RequestException as e:
        typer.echo(f"Failed to reach manager: {e}")
        raise typer.Exit(1)

    if response.status_code != 204:
        _report_error(response)
    typer.echo(f"Stop requested for task {task_id}")


@app.command()
def version() -> None:
    """Show Corral version"""
    from corral import __version__
    typer.echo(f"Corral v{__version__}")


def run() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    run()
