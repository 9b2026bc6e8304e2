"""
Unit tests for CleanupReporter
"""

import csv
import io
import json
from datetime import datetime, timedelta, timezone

import pytest

from cleanup.manager import TaskManager
from cleanup.reporter import (
    DECLINED,
    IMPROVED,
    STABLE,
    CleanupReporter,
    ReportPeriod,
    report_to_dict,
)
from cleanup.types import TaskStatus, TaskType
from core.utils.time_utils import utcnow

from tests.fakes import make_result

GB = 1024 ** 3


@pytest.fixture
def task_manager():
    return TaskManager()


@pytest.fixture
def reporter(task_manager, config_manager):
    return CleanupReporter(task_manager, config_manager)


def kinds(report):
    return [r.kind for r in report.recommendations]


class TestGenerateReport:
    def test_failure_rate_recommendation(self, reporter, task_manager):
        task_types = [TaskType.TEMP_FILES, TaskType.LOG_CLEANUP, TaskType.CACHE_CLEANUP, TaskType.ORPHAN_FILES]
        for i in range(8):
            task_manager.record_result(make_result(task_types[i % 4], hours_ago=1))
        for i in range(2):
            task_manager.record_result(
                make_result(task_types[i], status=TaskStatus.FAILED, cleaned=0, errors=["boom"], hours_ago=2)
            )

        report = reporter.generate_report(ReportPeriod.last(24))

        assert report.summary.total_tasks == 10
        assert report.summary.successful_tasks == 8
        assert report.summary.failed_tasks == 2
        assert report.summary.failure_rate == 20.0
        assert "high_failure_rate" in kinds(report)
        assert "dominant_task" not in kinds(report)
        assert report.task_breakdown[TaskType.TEMP_FILES].total_tasks == 3

    def test_results_outside_window_excluded(self, reporter, task_manager):
        task_manager.record_result(make_result(hours_ago=30))
        task_manager.record_result(make_result(hours_ago=1))

        report = reporter.generate_report(ReportPeriod.last(24))

        assert report.summary.total_tasks == 1

    def test_empty_window_has_no_recommendations(self, reporter):
        report = reporter.generate_report()

        assert report.summary.total_tasks == 0
        assert report.recommendations == []

    def test_effective_and_dominant(self, reporter, task_manager):
        task_manager.record_result(make_result(TaskType.ORPHAN_FILES, bytes_freed=2 * GB))
        task_manager.record_result(make_result(TaskType.ORPHAN_FILES))
        task_manager.record_result(make_result(TaskType.TEMP_FILES))

        report = reporter.generate_report()

        assert "effective_cleanup" in kinds(report)
        dominant = [r for r in report.recommendations if r.kind == "dominant_task"]
        assert dominant[0].task_type == TaskType.ORPHAN_FILES

    def test_low_yield_and_slow(self, reporter, task_manager):
        task_manager.record_result(make_result(bytes_freed=1024, duration_ms=10 * 60 * 1000))

        report = reporter.generate_report()

        assert "low_yield" in kinds(report)
        assert "slow_execution" in kinds(report)
        assert "dominant_task" not in kinds(report)

    def test_report_serializes(self, reporter, task_manager):
        task_manager.record_result(make_result())

        data = report_to_dict(reporter.generate_report())

        assert data["summary"]["total_tasks"] == 1
        assert json.dumps(data)


class TestSchedule:
    def test_next_scheduled_tasks_sorted(self, reporter):
        now = datetime(2024, 5, 1, 0, 10, tzinfo=timezone.utc)

        scheduled = reporter.get_next_scheduled_tasks(now)

        assert scheduled[0].task_type == TaskType.EXPIRED_TRANSACTIONS
        assert scheduled[0].next_run == datetime(2024, 5, 1, 0, 30, tzinfo=timezone.utc)
        runs = [s.next_run for s in scheduled]
        assert runs == sorted(runs)
        assert TaskType.LOG_ARCHIVE not in [s.task_type for s in scheduled]


class TestTaskTypeReport:
    def test_trends_compare_window_halves(self, reporter, task_manager):
        task_manager.record_result(make_result(status=TaskStatus.FAILED, cleaned=0, errors=["x"], duration_ms=1000, hours_ago=36))
        task_manager.record_result(make_result(cleaned=1, duration_ms=1000, hours_ago=36))
        task_manager.record_result(make_result(cleaned=5, duration_ms=100, hours_ago=1))
        task_manager.record_result(make_result(cleaned=5, duration_ms=100, hours_ago=1))
        task_manager.record_result(make_result(TaskType.LOG_CLEANUP, hours_ago=1))

        report = reporter.generate_task_type_report(TaskType.TEMP_FILES, ReportPeriod.last(48))

        assert report.summary.total_tasks == 4
        assert report.success_rate == 75.0
        assert report.trends.execution == IMPROVED
        assert report.trends.performance == IMPROVED
        assert report.trends.effectiveness == IMPROVED
        assert report.recent_errors == ["x"]

    def test_declining_performance(self, reporter, task_manager):
        task_manager.record_result(make_result(duration_ms=100, hours_ago=36))
        task_manager.record_result(make_result(duration_ms=500, hours_ago=1))

        report = reporter.generate_task_type_report(TaskType.TEMP_FILES, ReportPeriod.last(48))

        assert report.trends.performance == DECLINED
        assert report.trends.execution == STABLE
        assert report.trends.effectiveness == STABLE

    def test_single_half_is_stable(self, reporter, task_manager):
        task_manager.record_result(make_result(hours_ago=1))

        report = reporter.generate_task_type_report(TaskType.TEMP_FILES)

        assert report.trends.execution == STABLE
        assert report.trends.performance == STABLE


class TestExportHistory:
    def test_export_json(self, reporter, task_manager):
        task_manager.record_result(make_result())
        task_manager.record_result(make_result(status=TaskStatus.FAILED, errors=["a", "b"]))

        rows = json.loads(reporter.export_history("json"))

        assert len(rows) == 2
        assert rows[1]["status"] == "FAILED"
        assert rows[1]["errors"] == ["a", "b"]

    def test_export_csv(self, reporter, task_manager):
        task_manager.record_result(make_result(status=TaskStatus.FAILED, errors=["a", "b"]))

        rows = list(csv.DictReader(io.StringIO(reporter.export_history("csv"))))

        assert len(rows) == 1
        assert rows[0]["task_type"] == "temp_files"
        assert rows[0]["errors"] == "a; b"

    def test_export_period(self, reporter, task_manager):
        task_manager.record_result(make_result(hours_ago=30))
        task_manager.record_result(make_result(hours_ago=1))

        rows = json.loads(reporter.export_history("json", ReportPeriod.last(24)))

        assert len(rows) == 1

    def test_unknown_format(self, reporter):
        with pytest.raises(ValueError):
            reporter.export_history("xml")


class TestReportPeriod:
    def test_split(self):
        end = utcnow()
        period = ReportPeriod(end - timedelta(hours=10), end)

        older, recent = period.split()

        assert older.end == recent.start == end - timedelta(hours=5)
        assert period.contains(end)
        assert not period.contains(end + timedelta(seconds=1))
