"""Passive decoder and MCP server for the Seplos V3 multi-pack BMS bus."""

__version__ = "0.1.0"
