"""
清理任务编排系统的自定义异常
"""
from typing import Any, List, Optional


class JanitorException(Exception):
    """Media-Janitor 基础异常类"""
    pass


# ========== 数据库异常 ==========

class DatabaseException(JanitorException):
    """数据库相关异常基类"""
    pass


class DatabaseNotInitializedException(DatabaseException):
    """数据库未初始化异常"""
    def __init__(self, manager_name: str = "DatabaseManager"):
        super().__init__(
            f"{manager_name} not initialized. Call init() first."
        )


# ========== Redis异常 ==========

class RedisException(JanitorException):
    """Redis相关异常基类"""
    pass


class RedisNotInitializedException(RedisException):
    """Redis未初始化异常"""
    def __init__(self):
        super().__init__(
            "RedisManager not initialized. Call init() first."
        )


# ========== 对象存储异常 ==========

class StorageException(JanitorException):
    """对象存储相关异常基类"""
    pass


class StorageOperationException(StorageException):
    """对象存储操作失败"""
    def __init__(self, operation: str, key: Optional[str], detail: str):
        self.operation = operation
        self.key = key
        target = f" ({key})" if key else ""
        super().__init__(f"Storage {operation}{target} failed: {detail}")


# ========== 配置异常 ==========

class ConfigurationException(JanitorException):
    """配置相关异常基类"""
    pass


class InvalidConfigException(ConfigurationException):
    """无效的配置异常"""
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(
            "Invalid configuration: " + "; ".join(self.errors)
        )


# ========== 清理任务异常 ==========

class CleanupTaskException(JanitorException):
    """清理任务相关异常基类"""
    def __init__(self, task_type: Any, message: str):
        self.task_type = task_type
        super().__init__(message)


class TaskDisabledException(CleanupTaskException):
    """任务已禁用"""
    def __init__(self, task_type: Any):
        super().__init__(task_type, f"清理任务 {task_type} 已禁用")


class TaskAlreadyRunningException(CleanupTaskException):
    """同类型任务正在运行"""
    def __init__(self, task_type: Any):
        super().__init__(task_type, f"清理任务 {task_type} 正在运行中")


class TaskTimeoutException(CleanupTaskException):
    """任务执行超时"""
    def __init__(self, task_type: Any, timeout: float):
        self.timeout = timeout
        super().__init__(
            task_type, f"timeout: task {task_type} exceeded {timeout}s"
        )


class UnsupportedTaskException(CleanupTaskException):
    """不支持的任务类型"""
    def __init__(self, task_type: Any):
        super().__init__(task_type, f"不支持的清理任务类型: {task_type}")
