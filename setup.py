# setup.py
"""Setup script for Flow Scheduler."""

from setuptools import setup, find_packages

setup(
    name="flow-scheduler",
    version="1.0.0",
    packages=find_packages(include=["flow_scheduler", "flow_scheduler.*", "cli", "cli.*"]),
    include_package_data=True,
    install_requires=[
        "click>=8.0",
        "pyyaml>=6.0",
        "httpx>=0.24",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "structlog>=23.1",
        "croniter>=2.0",
        "aiofiles>=23.1",
        "tzdata",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "black>=23.0",
            "flake8>=6.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "flow-scheduler=cli.main:cli",
            "fsched=cli.main:cli",  # Short alias
        ],
    },
    python_requires=">=3.10",
)
