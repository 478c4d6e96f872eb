"""
Setup script for FlowBatch Core
"""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# --------------------------------------------------------------------------
# Optional dependency groups
# Upper bounds on major versions prevent unexpected breaking changes.
# --------------------------------------------------------------------------
_test_deps = [
    "pytest>=7.0.0,<9",
    "pytest-asyncio>=0.21.0,<1",
    "httpx>=0.24.0,<1",
]

setup(
    name="flowbatch-core",
    version="0.1.0",
    author="FlowBatch",
    description="Workflow execution engine - graph traversal, batched scheduling, interpolation and status sync",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.100.0,<1",
        "uvicorn>=0.23.0,<1",
        "pydantic>=2.0.0,<3",
        "requests>=2.31.0,<3",
        "supabase>=1.0.0,<3",
        "python-dotenv>=1.0.0,<2",
        "click>=8.0.0,<9",
        "rich>=13.0.0,<15",
        "typing_extensions>=4.5.0",
    ],
    extras_require={
        "test": _test_deps,                            # pytest, pytest-asyncio, httpx
    },
    entry_points={
        "console_scripts": [
            "flowbatch-core=src.cli.main:cli",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
