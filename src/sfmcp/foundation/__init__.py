"""
sfmcp.foundation - Foundation Layer

Settings, logging and serialization types. Nothing here imports from
sfmcp.core or sfmcp.mcp.
"""
