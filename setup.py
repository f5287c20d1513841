#!/usr/bin/env python3
"""iotdeploy - Setup"""

from setuptools import setup, find_packages

with open("requirements.txt") as f:
    requirements = [line for line in f.read().splitlines() if line and not line.startswith("#")]

setup(
    name="iotdeploy",
    version="1.0.0",
    description="Idempotent EKS lifecycle orchestration for the IoT stack",
    author="iotdeploy Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"iotdeploy": ["templates/*.j2"]},
    include_package_data=True,
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "iotdeploy=iotdeploy.main:main",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
