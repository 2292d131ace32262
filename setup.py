"""
Setup shim for tools that still call ``setup.py`` directly.

This file works alongside pyproject.toml (PEP 517). setuptools reads the
static metadata, dependencies and the ``cryptgmm-bench`` entry point from
pyproject.toml; nothing is computed at install time.
"""

from setuptools import setup

setup()
