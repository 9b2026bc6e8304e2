#!/usr/bin/env python3
"""
清理工具命令行入口

用法:
    janitor --list                                # 列出所有任务
    janitor --validate                            # 校验配置
    janitor --task orphan_files --dry-run         # 试运行指定任务
    janitor --task log_cleanup --retention-days 14
    janitor --batch temp_files cache_cleanup      # 批量执行
    janitor --all --report                        # 执行所有启用的任务并输出报告
    janitor --estimate orphan_files               # 预估影响
    janitor --daemon                              # 按 schedule 定时执行
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import List, Optional

from loguru import logger

from core.config import get_settings
from core.exceptions import CleanupTaskException, ConfigurationException
from core.utils.logger import setup_logger
from core.utils.time_utils import format_bytes, format_duration

from .config import ConfigManager
from .daemon import CleanupDaemon
from .factory import Orchestrator, build_config_manager, build_orchestrator
from .reporter import ReportPeriod, report_to_dict
from .types import CleanupOptions, CleanupResult, TaskType

TASK_CHOICES = [t.value for t in TaskType]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="janitor", description="存储清理任务编排工具")

    action = parser.add_mutually_exclusive_group()
    action.add_argument("--list", action="store_true", help="列出所有清理任务")
    action.add_argument("--validate", action="store_true", help="校验当前配置")
    action.add_argument("--export-config", action="store_true", help="以 JSON 输出当前配置")
    action.add_argument("--task", choices=TASK_CHOICES, help="执行指定任务")
    action.add_argument("--batch", nargs="+", choices=TASK_CHOICES, metavar="TASK", help="批量执行多个任务")
    action.add_argument("--all", action="store_true", help="执行所有启用的任务")
    action.add_argument("--estimate", choices=TASK_CHOICES, metavar="TASK", help="预估任务影响（不做修改）")
    action.add_argument("--task-report", choices=TASK_CHOICES, metavar="TASK", help="输出单个任务的趋势报告")
    action.add_argument("--flush-cache", action="store_true", help="清空全部缓存（仅限维护窗口）")
    action.add_argument("--daemon", action="store_true", help="按 schedule 定时执行")

    parser.add_argument("--dry-run", action="store_true", help="试运行，不修改任何资源")
    parser.add_argument("--retention-days", type=float, help="覆盖保留天数")
    parser.add_argument("--batch-size", type=int, help="覆盖批大小")
    parser.add_argument("--include-protected", action="store_true", help="孤儿文件清理包含受保护文件")
    parser.add_argument("--report", action="store_true", help="执行后输出汇总报告")
    parser.add_argument("--report-hours", type=float, default=24, help="报告时间窗口（小时）")
    parser.add_argument("--export-history", choices=["json", "csv"], help="执行后导出历史")
    return parser


def options_from_args(args: argparse.Namespace) -> Optional[CleanupOptions]:
    values = {
        "dry_run": True if args.dry_run else None,
        "retention_days": args.retention_days,
        "batch_size": args.batch_size,
        "include_protected": True if args.include_protected else None,
    }
    values = {k: v for k, v in values.items() if v is not None}
    return CleanupOptions(**values) if values else None


def list_tasks(config_manager: ConfigManager) -> None:
    logger.info("\n📋 可用的清理任务:\n")
    for task_type in TaskType:
        task = config_manager.get_task_config(task_type)
        status = "启用" if task.enabled else "禁用"
        logger.info(
            f"  {task_type.value:<24} [{status}]\n"
            f"    描述: {task.description}\n"
            f"    调度: {task.schedule or '-'}  保留: {task.retention_days}天  "
            f"批大小: {task.batch_size}  超时: {config_manager.get_task_timeout(task_type)}秒"
        )


def validate(config_manager: ConfigManager) -> int:
    result = config_manager.validate_config()
    if result.valid:
        logger.info("✅ 配置有效")
        return 0
    logger.error("❌ 配置无效:")
    for error in result.errors:
        logger.error(f"  - {error}")
    return 1


def log_result(result: CleanupResult) -> None:
    stats = result.stats
    line = (
        f"[{result.task_type}] {result.status.value}: "
        f"处理 {stats.processed_count} / 清理 {stats.cleaned_count} / "
        f"失败 {stats.failed_count} / 跳过 {stats.skipped_count}, "
        f"释放 {format_bytes(stats.bytes_freed)}, 耗时 {format_duration(result.duration_ms)}"
    )
    if result.success:
        logger.info(f"✅ {line}")
    else:
        logger.error(f"❌ {line}")
        for error in stats.errors[:5]:
            logger.error(f"  - {error}")


async def run_tasks(orchestrator: Orchestrator, args: argparse.Namespace) -> int:
    executor = orchestrator.executor
    options = options_from_args(args)

    if args.task:
        results: List[CleanupResult] = [await executor.execute_task(args.task, options)]
    elif args.batch:
        results = await executor.execute_batch(args.batch, options)
    else:
        results = await executor.execute_all(options)

    logger.info("-" * 70)
    for result in results:
        log_result(result)

    if args.report:
        report = orchestrator.reporter.generate_report(ReportPeriod.last(args.report_hours))
        print(json.dumps(report_to_dict(report), ensure_ascii=False, indent=2))

    if args.export_history:
        print(orchestrator.reporter.export_history(args.export_history))

    return 0 if all(r.success for r in results) else 1


async def run_daemon(orchestrator: Orchestrator) -> None:
    daemon = CleanupDaemon(orchestrator)
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, daemon.stop)

    logger.info("🚀 Cleanup daemon is running...")
    await daemon.run()


async def run(args: argparse.Namespace) -> int:
    orchestrator = build_orchestrator()
    try:
        if args.estimate:
            estimate = await orchestrator.executor.estimate_impact(args.estimate, options_from_args(args))
            source = "经验值" if estimate.heuristic else "试运行"
            logger.info(
                f"📐 [{estimate.task_type}] 预估（{source}）: {estimate.items} 项, "
                f"{format_bytes(estimate.bytes)}, 约 {format_duration(estimate.duration_ms)}"
            )
            return 0

        if args.task_report:
            report = orchestrator.reporter.generate_task_type_report(args.task_report)
            print(json.dumps(report_to_dict(report), ensure_ascii=False, indent=2))
            return 0

        if args.flush_cache:
            removed = await orchestrator.cache_handler.clear_all_cache()
            logger.info(f"✅ 已清空缓存: {removed} 个键")
            return 0

        if args.daemon:
            await run_daemon(orchestrator)
            return 0

        return await run_tasks(orchestrator, args)

    except CleanupTaskException as e:
        logger.error(f"❌ {e}")
        return 1

    finally:
        await orchestrator.close()


def main() -> int:
    args = build_parser().parse_args()

    settings = get_settings()
    settings.ensure_directories()
    setup_logger(settings.LOG_LEVEL, settings.LOG_FILE)

    logger.info("=" * 70)
    logger.info("🧹 Media-Janitor 清理工具")
    logger.info("=" * 70)

    try:
        if args.list or args.validate or args.export_config:
            config_manager = build_config_manager(settings)
            if args.list:
                list_tasks(config_manager)
                return 0
            if args.export_config:
                print(config_manager.export_config())
                return 0
            return validate(config_manager)

        return asyncio.run(run(args))

    except ConfigurationException as e:
        logger.error(f"❌ 配置错误: {e}")
        return 1

    except Exception as e:
        logger.exception(f"❌ 清理过程中出错: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
