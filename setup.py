"""
Media-Janitor 安装配置
"""
from setuptools import setup, find_packages

setup(
    name="media-janitor",
    version="1.0.0",
    description="存储清理任务编排引擎",
    author="Media-Janitor Team",
    author_email="",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "loguru>=0.7",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "sqlalchemy[asyncio]>=2.0",
        "sqlmodel>=0.0.48",
        "asyncpg>=0.29",
        "redis>=5.0",
        "boto3>=1.28",
        "aiofiles>=23.1",
        "PyYAML>=6.0",
        "apscheduler>=3.10,<4",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "aiosqlite>=0.19",
        ],
    },
    entry_points={
        "console_scripts": [
            "janitor=cleanup.main:main",
        ],
    },
)
