"""
Azure DevOps MCP Server
Servidor principal que registra todas las herramientas MCP
"""

import logging
import sys

from fastmcp import FastMCP

from ado_mcp import azure_devops_config as config
from ado_mcp.tools import register_all_tools

logger = logging.getLogger(__name__)


def create_server() -> FastMCP:
    """Crea el servidor MCP con todas las tools registradas."""
    mcp = FastMCP(
        name="Azure DevOps Server",
        on_duplicate_tools="error")
    register_all_tools(mcp)
    return mcp


def configure_logging() -> None:
    # stdout queda reservado para el protocolo MCP (transporte stdio)
    logging.basicConfig(
        level=config.AZURE_DEVOPS_LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def main() -> None:
    configure_logging()

    # Verificar que la configuración esté completa
    problems = config.validate_config()
    if problems:
        for problem in problems:
            logger.error("Error: %s", problem)
        sys.exit(1)

    logger.info(
        "Iniciando Azure DevOps MCP Server para la organización: %s (transport=%s)",
        config.default_org,
        config.MCP_TRANSPORT,
    )
    mcp = create_server()
    if config.MCP_TRANSPORT == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport=config.MCP_TRANSPORT, port=config.MCP_PORT)


if __name__ == "__main__":
    main()
