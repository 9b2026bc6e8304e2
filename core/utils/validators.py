"""
验证工具
"""
import re
from typing import Optional

CRON_FIELD_COUNT = 5
_CRON_FIELD_PATTERN = re.compile(r"^[\d\*/,\-A-Za-z\?LW#]+$")
_CRON_STEP_PATTERN = re.compile(r"/\d+")


def validate_cron_expression(expression: str) -> Optional[str]:
    """
    粗略验证调度表达式（标准 5 段 cron）

    只检查字段数量和字符集，不做语义解析。
    星期字段只接受名称（mon-sun）：APScheduler 的数字星期从周一起算，
    与标准 cron（0 为周日）不一致

    Args:
        expression: cron 表达式，如 "0 3 * * *"

    Returns:
        错误描述；合法时返回 None
    """
    if not expression or not expression.strip():
        return "schedule expression is empty"

    fields = expression.split()
    if len(fields) != CRON_FIELD_COUNT:
        return (
            f"schedule '{expression}' has {len(fields)} fields, "
            f"expected {CRON_FIELD_COUNT}"
        )

    for field in fields:
        if not _CRON_FIELD_PATTERN.match(field):
            return f"schedule '{expression}' has invalid field '{field}'"

    day_of_week = _CRON_STEP_PATTERN.sub("", fields[-1])
    if any(ch.isdigit() for ch in day_of_week):
        return (
            f"schedule '{expression}' has numeric day-of-week '{fields[-1]}', "
            f"use names (mon-sun)"
        )

    return None

