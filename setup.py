#!/usr/bin/env python3
"""
Setup configuration for GC Log Connector.
"""
from pathlib import Path

from setuptools import find_packages, setup

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

setup(
    name="gc-connector",
    version="1.0.0",
    description="Ships JVM garbage-collection logs to object storage",
    long_description=long_description,
    long_description_content_type="text/markdown",
    # Package discovery
    packages=find_packages(where=".", exclude=["tests", "tests.*"]),
    package_dir={"": "."},
    # Python version requirement
    python_requires=">=3.10",
    # Runtime dependencies
    install_requires=[
        "watchdog>=3.0.0",
        "boto3>=1.28.0",
        "pyyaml>=6.0",
        "requests>=2.31.0",
    ],
    # Optional dependencies
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.11.0",
        ],
        "dev": [
            "black>=23.0.0",
            "flake8>=6.0.0",
            "pylint>=2.17.0",
            "isort>=5.12.0",
            "pre-commit>=3.3.0",
        ],
    },
    # Entry points
    entry_points={
        "console_scripts": [
            "gc-connector=gc_connector.main:main",
        ],
    },
    # Classifiers
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: POSIX :: Linux",
        "Topic :: System :: Monitoring",
        "Topic :: System :: Logging",
    ],
    include_package_data=True,
)
