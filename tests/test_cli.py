"""
Unit tests for the janitor command line
"""

import pytest

from cleanup.main import build_parser, options_from_args, validate
from cleanup.config import CleanupConfig, ConfigManager
from cleanup.types import TaskType


class TestParser:
    def test_task_with_modifiers(self):
        args = build_parser().parse_args(
            ["--task", "orphan_files", "--dry-run", "--retention-days", "14", "--include-protected"]
        )

        options = options_from_args(args)

        assert args.task == TaskType.ORPHAN_FILES.value
        assert options.dry_run is True
        assert options.retention_days == 14
        assert options.include_protected is True
        assert options.batch_size is None

    def test_no_modifiers_means_no_options(self):
        args = build_parser().parse_args(["--all"])
        assert options_from_args(args) is None

    def test_actions_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--all", "--list"])

    def test_unknown_task_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--task", "everything"])

    def test_batch_takes_several_tasks(self):
        args = build_parser().parse_args(["--batch", "temp_files", "cache_cleanup"])
        assert args.batch == ["temp_files", "cache_cleanup"]


class TestValidateCommand:
    def test_exit_codes(self, config_manager):
        assert validate(config_manager) == 0
        assert validate(ConfigManager(CleanupConfig())) == 1
