# tools/__init__.py
from fastmcp import FastMCP

from ado_mcp.tools.time_logs import register_time_log_tools
from ado_mcp.tools.users import register_user_tools
from ado_mcp.tools.work_items import register_work_item_tools


def register_all_tools(mcp: FastMCP) -> None:
    """
    Registra todas las tools en el servidor MCP.

    Args:
        mcp: Instancia de FastMCP
    """
    register_user_tools(mcp)
    register_work_item_tools(mcp)
    register_time_log_tools(mcp)
