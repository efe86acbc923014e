# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Setup configuration for the FlowEngine workflow execution engine
"""

from setuptools import setup, find_packages

setup(
    name="flowengine",
    version="1.0.0",
    description="DAG workflow execution engine with AI, retrieval and integration nodes",
    author="Jason Cafarelli",
    packages=find_packages(include=["flowengine", "flowengine.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.5.0",
        "httpx>=0.25.0",
        "pyyaml>=6.0",
        "aiofiles>=23.2.0",
        "tiktoken>=0.5.0",
        "openai>=1.10.0",
        "anthropic>=0.18.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "flowengine=flowengine.cli:main",
        ]
    },
)
