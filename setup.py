"""
SoraQueue v5 build script.

Usage:
    # Development (editable install):
    pip install -e .

    # Run:
    soraqueue prompts.txt --auth "Bearer ..."
"""

from setuptools import setup

APP_NAME = "SoraQueue"

setup(
    name=APP_NAME,
    version="5.0.0",
    description="Admission-controlled job submitter for the Sora video backend",
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    packages=[
        "soraqueue",
        "soraqueue.core",
    ],
    py_modules=["main"],
    entry_points={
        "console_scripts": [
            "soraqueue = main:main",
        ],
    },
)
