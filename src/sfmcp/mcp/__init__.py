"""
sfmcp.mcp - MCP protocol layer

- confirmation.py: ConfirmationGate over elicitation
- notifications.py: progress and client log emitters
- resources.py: browsable resources
- server.py: low-level Server wiring and stdio runner
"""
