# SASjs Python Adapter
# File: transports/__init__.py
# Version: v1

"""Transports that serve the SASjs MCP tools."""
