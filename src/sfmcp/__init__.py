"""
sfmcp - Salesforce MCP Server

Exposes the Salesforce `sf` CLI and REST API as MCP tools, with target org
resolution, an access policy gate, confirmation for destructive operations
and progress/log side channels.
"""

__version__ = "0.3.0"
