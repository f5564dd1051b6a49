"""Setup script for the capability-router package."""

from setuptools import setup, find_packages

setup(
    name="capability-router",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "structlog>=23.1",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "prometheus-client>=0.17",
        "httpx>=0.25",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
        ],
    },
    description="Capability Router - routed execution core for chat automation agents",
    author="Capability Router Team",
)
