"""
TuneCast setuptools build script.

Usage:
    # Development (editable install):
    pip install -e .[test]

    # Run the tests:
    python3 -m pytest tests/
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "tunecast"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Playlist to HLS audio stream downloader",
    packages=find_namespace_packages(include=["tunecast", "tunecast.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "tunecast=main:main",
        ],
    },
)
