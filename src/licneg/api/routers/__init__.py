"""
Routing subpackage.

This module exposes the routers for negotiations, strategies, publishers
and notifications so they can be imported succinctly in ``api/main.py``.
"""
from . import (
    negotiations,
    notifications,
    publishers,
    strategies,
)  # noqa: F401
