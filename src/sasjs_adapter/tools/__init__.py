# SASjs Python Adapter
# File: tools/__init__.py
# Version: v1

"""MCP tools exposing the SASjs adapter."""

from __future__ import annotations

from .tasks import register_tools

__all__ = ["register_tools"]
