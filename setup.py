"""Setup configuration for syncctl."""

from setuptools import setup, find_packages

setup(
    name="syncctl",
    version="1.0.0",
    description="Scheduled folder synchronization with versioned backups",
    author="Your Name",
    packages=find_packages(include=["syncctl", "syncctl.*"]),
    install_requires=[
        "click>=8.1.7",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "loguru>=0.7.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
        ],
    },
    entry_points={
        "console_scripts": [
            "syncctl=syncctl.cli:cli",
        ],
    },
    python_requires=">=3.8",
)
