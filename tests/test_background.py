"""Tests for the background job registry."""

from __future__ import annotations

import asyncio

import pytest

from src.services.background import BackgroundJobs


async def test_spawned_job_runs_to_completion() -> None:
    jobs = BackgroundJobs()
    done: list[str] = []

    async def work() -> None:
        await asyncio.sleep(0)
        done.append("ran")

    task = jobs.spawn(work(), name="job-1")
    assert task.get_name() == "job-1"
    await jobs.wait_idle(timeout=5)

    assert done == ["ran"]
    assert jobs.active_count == 0


async def test_failed_job_does_not_propagate() -> None:
    jobs = BackgroundJobs()

    async def boom() -> None:
        raise ValueError("boom")

    jobs.spawn(boom(), name="failing")
    await jobs.wait_idle(timeout=5)
    assert jobs.active_count == 0


async def test_active_names_lists_running_jobs() -> None:
    jobs = BackgroundJobs()
    gate = asyncio.Event()

    jobs.spawn(gate.wait(), name="b")
    jobs.spawn(gate.wait(), name="a")
    assert jobs.active_names == ["a", "b"]

    gate.set()
    await jobs.wait_idle(timeout=5)


async def test_shutdown_cancels_and_rejects_new_work() -> None:
    jobs = BackgroundJobs()
    task = jobs.spawn(asyncio.sleep(3600), name="forever")

    await jobs.shutdown(timeout=1)

    assert task.cancelled()
    with pytest.raises(RuntimeError):
        jobs.spawn(asyncio.sleep(0), name="late")
