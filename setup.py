#!/usr/bin/env python3
"""
setup.py compatibility wrapper for tools that still require it.

strata-migrations uses pyproject.toml with hatchling as the build backend.
For normal Python installation, use:
    pip install .
"""

from setuptools import setup

# Configuration lives in pyproject.toml
setup()
