"""Setup script for the Turnpilot package."""

from setuptools import setup, find_packages

setup(
    name="turnpilot",
    version="0.1.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=[
        "asyncpg>=0.29",
        "fastapi>=0.110",
        "httpx>=0.27",
        "langchain-core>=0.2",
        "prometheus-client>=0.20",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "structlog>=24.1",
        "tenacity>=8.2",
        "uvicorn>=0.29",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    description="Turnpilot - agentic orchestration control plane for conversational turns",
    author="Turnpilot Team",
)
