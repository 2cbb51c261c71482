import pytest

from notebooklm_bridge.polling import (
    AsyncTask,
    TaskKind,
    TaskStatus,
    research_status,
    studio_status,
    wait_for_task,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def scripted_poll(*statuses):
    snapshots = iter(statuses)

    def poll():
        return AsyncTask("t1", TaskKind.RESEARCH, "nb1", status=next(snapshots))
    return poll


class TestStatusTranslation:
    @pytest.mark.parametrize("code, expected", [
        (None, TaskStatus.PENDING),
        (1, TaskStatus.RUNNING),
        (2, TaskStatus.COMPLETED),
        (6, TaskStatus.COMPLETED),
        (3, TaskStatus.FAILED),
        (99, TaskStatus.RUNNING),
    ])
    def test_research(self, code, expected):
        assert research_status(code) is expected

    @pytest.mark.parametrize("code, expected", [
        (None, TaskStatus.PENDING),
        (1, TaskStatus.RUNNING),
        (3, TaskStatus.COMPLETED),
        (4, TaskStatus.FAILED),
        (2, TaskStatus.RUNNING),
    ])
    def test_studio(self, code, expected):
        assert studio_status(code) is expected

    def test_to_dict_flattens_result(self):
        task = AsyncTask("t1", TaskKind.STUDIO, "nb1", TaskStatus.RUNNING, {"type": "audio"})

        assert task.to_dict() == {
            "task_id": "t1",
            "kind": "studio",
            "notebook_id": "nb1",
            "status": "running",
            "type": "audio",
        }


class TestWaitForTask:
    def test_returns_as_soon_as_terminal(self):
        clock = FakeClock()
        poll = scripted_poll(TaskStatus.PENDING, TaskStatus.RUNNING, TaskStatus.COMPLETED)

        task, polls = wait_for_task(poll, poll_interval=10, max_wait=300, sleep=clock.sleep, clock=clock)

        assert task.status is TaskStatus.COMPLETED
        assert polls == 3
        assert clock.sleeps == [10, 10]

    def test_deadline_returns_last_snapshot(self):
        clock = FakeClock()
        poll = scripted_poll(*[TaskStatus.RUNNING] * 10)

        task, polls = wait_for_task(poll, poll_interval=30, max_wait=60, sleep=clock.sleep, clock=clock)

        assert task.status is TaskStatus.RUNNING
        assert polls == 3
        assert clock.now == 60

    def test_zero_wait_polls_once(self):
        clock = FakeClock()
        poll = scripted_poll(TaskStatus.RUNNING)

        task, polls = wait_for_task(poll, max_wait=0, sleep=clock.sleep, clock=clock)

        assert polls == 1
        assert clock.sleeps == []

    def test_last_sleep_is_clipped_to_deadline(self):
        clock = FakeClock()
        poll = scripted_poll(*[TaskStatus.RUNNING] * 10)

        wait_for_task(poll, poll_interval=40, max_wait=100, sleep=clock.sleep, clock=clock)

        assert clock.sleeps == [40, 40, 20]

    def test_failed_is_terminal(self):
        clock = FakeClock()
        poll = scripted_poll(TaskStatus.FAILED)

        task, polls = wait_for_task(poll, sleep=clock.sleep, clock=clock)

        assert task.is_terminal
        assert polls == 1
