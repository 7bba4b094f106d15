"""Setup configuration for the ModSentry moderation service."""

from setuptools import setup, find_packages

setup(
    name="modsentry",
    version="0.1.0",
    description="Automated message moderation and data retention service",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "aiosqlite",
        "PyYAML",
        "prompt_toolkit",
        "python-dotenv",
        "regex",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "modsentry=modsentry.main:main",
        ],
    },
)
