"""Azure DevOps MCP Server: work items, time logs y perfil de usuario."""

__version__ = "0.1.0"
