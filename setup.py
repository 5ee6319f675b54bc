"""
Setup script for the careermind export service.

Allows development installation with `pip install -e .`
"""

from setuptools import setup, find_packages

setup(
    name="careermind-export",
    version="0.1.0",
    packages=find_packages(include=["export_service", "export_service.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "pydantic>=2",
        "pydantic-settings>=2",
        "pymongo",
        "tenacity",
        "playwright",
        "PyJWT[crypto]>=2.4",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
            "cryptography",
        ],
    },
)
