"""Tests for the number assignment background task."""

import asyncio
from datetime import timedelta

import pytest

from squares.dal.games_dal import GameDAL
from squares.models.common import utc_now
from squares.models.game import GameConfig
from squares.tasks import number_assignment
from squares.tasks.number_assignment import (
    run_assignment_sweep,
    start_assignment_scheduler,
    stop_assignment_scheduler,
)


async def _create(grid_service, starts_in: timedelta):
    config = GameConfig(home_team="Lakers", away_team="Celtics", starts_at=utc_now() + starts_in)
    return await grid_service.create_game(config)


@pytest.mark.asyncio
class TestRunAssignmentSweep:

    async def test_assigns_games_inside_window(self, test_db, grid_service):
        soon = await _create(grid_service, timedelta(minutes=5))
        later = await _create(grid_service, timedelta(hours=3))

        assigned = await run_assignment_sweep(test_db)

        assert assigned == 1
        game_dal = GameDAL(test_db)
        assert (await game_dal.get_by_id(soon.id)).numbers_assigned is True
        assert (await game_dal.get_by_id(later.id)).numbers_assigned is False

    async def test_repeated_sweeps_do_not_reassign(self, test_db, grid_service):
        game = await _create(grid_service, timedelta(minutes=1))
        await run_assignment_sweep(test_db)
        first = await GameDAL(test_db).get_by_id(game.id)

        assert await run_assignment_sweep(test_db) == 0

        second = await GameDAL(test_db).get_by_id(game.id)
        assert second.home_numbers == first.home_numbers
        assert second.away_numbers == first.away_numbers

    async def test_skips_without_database(self):
        # No connection has been opened in the test process
        assert await run_assignment_sweep() == 0


@pytest.mark.asyncio
class TestScheduler:

    async def test_start_and_stop(self):
        start_assignment_scheduler(interval=3600)
        try:
            assert number_assignment.is_running() is True
            # a second start is a no-op
            start_assignment_scheduler(interval=3600)
            assert number_assignment.is_running() is True
        finally:
            stop_assignment_scheduler()
        assert number_assignment.is_running() is False
        await asyncio.sleep(0)

    async def test_loop_runs_sweep(self, monkeypatch):
        calls = []

        async def fake_sweep(db=None):
            calls.append(db)
            return 0

        monkeypatch.setattr(number_assignment, "run_assignment_sweep", fake_sweep)
        start_assignment_scheduler(interval=0)
        try:
            for _ in range(10):
                await asyncio.sleep(0)
                if calls:
                    break
        finally:
            stop_assignment_scheduler()
        assert calls
