"""
Unit tests for CleanupDaemon
"""

from unittest.mock import AsyncMock, Mock

import pytest

from cleanup.daemon import CleanupDaemon
from cleanup.manager import TaskManager
from cleanup.types import TaskType
from core.exceptions import TaskAlreadyRunningException


@pytest.fixture
def orchestrator(config_manager):
    orchestrator = Mock()
    orchestrator.config_manager = config_manager
    orchestrator.task_manager = TaskManager()
    orchestrator.executor.execute_task = AsyncMock()
    return orchestrator


class TestCleanupDaemon:
    def test_registers_enabled_scheduled_tasks(self, orchestrator, config_manager):
        daemon = CleanupDaemon(orchestrator)

        registered = daemon.register_jobs()

        assert registered == config_manager.get_enabled_tasks()
        job_ids = {job.id for job in daemon._scheduler.get_jobs()}
        assert "cleanup_orphan_files" in job_ids
        assert "cleanup_stats" in job_ids
        assert "cleanup_log_archive" not in job_ids

    def test_invalid_schedule_not_registered(self, orchestrator, config_manager):
        config_manager.update_task_config(TaskType.TEMP_FILES, {"schedule": "99 * * * *"})
        config_manager.update_task_config(TaskType.CACHE_CLEANUP, {"schedule": None})

        registered = CleanupDaemon(orchestrator).register_jobs()

        assert TaskType.TEMP_FILES not in registered
        assert TaskType.CACHE_CLEANUP not in registered
        assert TaskType.ORPHAN_FILES in registered

    @pytest.mark.asyncio
    async def test_rejected_run_is_logged_not_raised(self, orchestrator):
        orchestrator.executor.execute_task.side_effect = TaskAlreadyRunningException(TaskType.TEMP_FILES)
        daemon = CleanupDaemon(orchestrator)

        await daemon._run_task(TaskType.TEMP_FILES)

        orchestrator.executor.execute_task.assert_awaited_once_with(TaskType.TEMP_FILES)

    def test_log_stats(self, orchestrator):
        CleanupDaemon(orchestrator)._log_stats()
