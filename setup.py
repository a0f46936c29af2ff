"""
Setup script for the Rate Change Notification Agent
"""
from setuptools import setup

setup(
    name="rate-change-sync",
    version="1.0.0",
    description="Rate change notification tracking with Clio matter field sync",
    author="Your Firm",
    python_requires=">=3.10",
    py_modules=[
        "config",
        "errors",
        "auth",
        "api_client",
        "field_updater",
        "progress",
        "batch_sync",
        "rate_changes",
        "agent",
    ],
    packages=[
        "db",
        "dashboard",
        "dashboard.models",
        "dashboard.routes",
        "commands",
    ],
    install_requires=[
        "httpx>=0.25.0",
        "python-dateutil>=2.8.2",
        "click>=8.1.0",
        "rich>=13.0.0",
        "python-dotenv>=1.0.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "pydantic>=2.0",
        "psycopg2-binary>=2.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ratechange-agent=agent:main",
        ],
    },
)
