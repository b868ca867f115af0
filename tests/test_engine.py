import threading

import pytest

from conftest import FakeDriver, make_submission, make_task

from corral.common.constants import ResultStatus, TaskState
from corral.common.errors import UnsupportedTransitionError
from corral.common.schemas import TaskSubmission
from corral.worker.engine import WorkerEngine


@pytest.fixture
def engine(driver):
    return WorkerEngine(driver, name="worker-test", poll_interval=0.01)


def test_process_next_on_empty_queue(engine):
    assert engine.process_next() is None


def test_start_then_stop_round_trip(engine, driver):
    task = make_task()
    assert engine.enqueue(make_submission(task))
    result = engine.process_next()

    assert result.ok
    running = engine.get_task(task.id)
    assert running.state == TaskState.RUNNING
    assert running.container_id == "container-1"
    assert running.port_bindings == {"80/tcp": "32768"}
    assert running.start_time is not None
    assert running.finish_time is None

    assert engine.enqueue(TaskSubmission.stop_request(running))
    result = engine.process_next()

    assert result.ok
    assert driver.stops == ["container-1"]
    done = engine.get_task(task.id)
    assert done.state == TaskState.COMPLETED
    assert done.container_id == "container-1"
    assert done.finish_time is not None
    assert done.finish_time >= done.start_time


def test_pending_to_running_is_rejected(engine, driver):
    submission = make_submission(state=TaskState.RUNNING)
    engine.enqueue(submission)
    result = engine.process_next()

    assert result.result == ResultStatus.ERROR
    assert "invalid transition from pending to running" in result.error
    assert engine.get_task(submission.task.id) is None
    assert driver.runs == []


def test_start_failure_marks_task_failed():
    driver = FakeDriver(run_error="image not found")
    engine = WorkerEngine(driver)
    task = make_task()
    engine.enqueue(make_submission(task))
    result = engine.process_next()

    assert not result.ok
    failed = engine.get_task(task.id)
    assert failed.state == TaskState.FAILED
    assert failed.error == "image not found"
    assert failed.container_id is None
    assert failed.finish_time is not None


def test_stop_failure_leaves_state_unchanged():
    driver = FakeDriver(stop_error="daemon unavailable")
    engine = WorkerEngine(driver)
    task = make_task()
    engine.enqueue(make_submission(task))
    engine.process_next()

    engine.enqueue(TaskSubmission.stop_request(engine.get_task(task.id)))
    result = engine.process_next()

    assert not result.ok
    assert result.error == "daemon unavailable"
    assert engine.get_task(task.id).state == TaskState.RUNNING


def test_replayed_submission_is_ignored(engine, driver):
    submission = make_submission()
    assert engine.enqueue(submission)
    assert not engine.enqueue(submission)
    assert len(engine.queue) == 1

    engine.process_next()
    assert not engine.enqueue(submission)
    assert engine.process_next() is None
    assert len(driver.runs) == 1


def test_query_is_idempotent(engine):
    for _ in range(3):
        engine.enqueue(make_submission())
        engine.process_next()

    first = engine.query()
    second = engine.query()
    assert [t.id for t in first] == [t.id for t in second]
    assert first == second
    assert engine.task_count == 3


def test_query_returns_copies(engine):
    task = make_task()
    engine.enqueue(make_submission(task))
    engine.process_next()

    snapshot = engine.query()
    snapshot[0].state = TaskState.FAILED
    assert engine.get_task(task.id).state == TaskState.RUNNING


def test_submission_for_terminal_task_is_rejected(engine, driver):
    task = make_task()
    engine.enqueue(make_submission(task))
    engine.process_next()
    engine.enqueue(TaskSubmission.stop_request(engine.get_task(task.id)))
    engine.process_next()

    engine.enqueue(make_submission(task))
    result = engine.process_next()

    assert not result.ok
    assert "invalid transition from completed to scheduled" in result.error
    assert engine.get_task(task.id).state == TaskState.COMPLETED
    assert len(driver.runs) == 1


def test_running_to_running_has_no_runtime_action(engine):
    task = make_task()
    engine.enqueue(make_submission(task))
    engine.process_next()

    engine.enqueue(make_submission(engine.get_task(task.id), state=TaskState.RUNNING))
    with pytest.raises(UnsupportedTransitionError):
        engine.process_next()
    assert engine.get_task(task.id).state == TaskState.RUNNING


def test_direct_failure_has_no_runtime_action(engine, driver):
    submission = make_submission(state=TaskState.FAILED)
    engine.enqueue(submission)

    with pytest.raises(UnsupportedTransitionError):
        engine.process_next()
    assert engine.get_task(submission.task.id) is None
    assert driver.runs == []


def test_submission_snapshot_is_isolated(engine):
    submission = make_submission()
    engine.enqueue(submission)
    submission.task.image = "mutated:latest"

    engine.process_next()
    assert engine.get_task(submission.task.id).image == "nginx:latest"


def test_replay_memory_is_bounded(driver):
    engine = WorkerEngine(driver, seen_limit=2)
    first, second, third = (make_submission() for _ in range(3))
    for submission in (first, second, third):
        assert engine.enqueue(submission)

    assert len(engine._seen) == 2
    # Oldest id has been forgotten; recent ones are still recognised.
    assert engine.enqueue(first)
    assert not engine.enqueue(third)


class _GatedDriver(FakeDriver):
    """Blocks ``run`` for tasks named ``slow`` until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def run(self, task):
        if task.name == "slow":
            self.entered.set()
            assert self.release.wait(5)
        return super().run(task)


def test_driver_call_does_not_block_other_tasks():
    driver = _GatedDriver()
    engine = WorkerEngine(driver)
    slow = make_task(name="slow")
    fast = make_task(name="fast")
    engine.enqueue(make_submission(slow))
    engine.enqueue(make_submission(fast))

    worker = threading.Thread(target=engine.process_next)
    worker.start()
    assert driver.entered.wait(5)

    # The slow start is still inside the driver.
    assert engine.process_next().ok
    assert engine.get_task(fast.id).state == TaskState.RUNNING
    assert engine.get_task(slow.id) is None

    driver.release.set()
    worker.join(5)
    assert engine.get_task(slow.id).state == TaskState.RUNNING


def test_submissions_for_a_busy_task_wait_their_turn():
    driver = _GatedDriver()
    engine = WorkerEngine(driver)
    slow = make_task(name="slow")
    engine.enqueue(make_submission(slow))

    worker = threading.Thread(target=engine.process_next)
    worker.start()
    assert driver.entered.wait(5)

    stop = make_submission(slow, state=TaskState.COMPLETED)
    engine.enqueue(stop)
    assert engine.process_next() is None
    assert len(engine.queue) == 1

    driver.release.set()
    worker.join(5)
    assert engine.process_next().ok
    assert engine.get_task(slow.id).state == TaskState.COMPLETED
