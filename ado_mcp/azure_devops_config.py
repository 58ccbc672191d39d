"""
Configuración de Azure DevOps
Variables de entorno, URL base y cliente HTTP compartidos por todas las tools
"""

import base64
import os
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import httpx
from azure.identity.aio import AzureCliCredential, DefaultAzureCredential
from dotenv import load_dotenv

from ado_mcp.errors import AzureDevOpsAuthenticationError, AzureDevOpsValidationError

# Cargar variables de entorno
load_dotenv()

AZURE_DEVOPS_ORGANIZATION = os.getenv("AZURE_DEVOPS_ORGANIZATION")
AZURE_DEVOPS_ORG_URL = os.getenv("AZURE_DEVOPS_ORG_URL") or (
    f"https://dev.azure.com/{AZURE_DEVOPS_ORGANIZATION}" if AZURE_DEVOPS_ORGANIZATION else None
)
AZURE_DEVOPS_AUTH_METHOD = os.getenv("AZURE_DEVOPS_AUTH_METHOD", "azure-identity")
AZURE_DEVOPS_PAT = os.getenv("AZURE_DEVOPS_PAT")
AZURE_DEVOPS_USERNAME = os.getenv("AZURE_DEVOPS_USERNAME")
AZURE_DEVOPS_DEFAULT_PROJECT = os.getenv("AZURE_DEVOPS_DEFAULT_PROJECT")
AZURE_DEVOPS_API_VERSION = os.getenv("AZURE_DEVOPS_API_VERSION", "7.1")
AZURE_DEVOPS_HTTP_TIMEOUT = float(os.getenv("AZURE_DEVOPS_HTTP_TIMEOUT", "30"))
AZURE_DEVOPS_LOG_LEVEL = os.getenv("AZURE_DEVOPS_LOG_LEVEL", "INFO")

MCP_TRANSPORT = os.getenv("MCP_TRANSPORT", "stdio")
MCP_PORT = int(os.getenv("MCP_PORT", "8000"))

# Recurso de Azure DevOps para pedir tokens a Azure AD
AZURE_DEVOPS_RESOURCE_ID = "499b84ac-1321-427f-aa17-267ca6975798"


def get_org_name_from_url(url: Optional[str]) -> str:
    """Extrae el nombre de la organización a partir de su URL."""
    if not url:
        return "unknown-organization"
    dev_match = re.match(r"https?://dev\.azure\.com/([^/]+)", url)
    if dev_match:
        return dev_match.group(1)
    fallback_match = re.match(r"https?://[^/]+/([^/]+)", url)
    if fallback_match:
        return fallback_match.group(1).replace("%20", " ")
    return "unknown-organization"


default_project = AZURE_DEVOPS_DEFAULT_PROJECT or "no default project"
default_org = get_org_name_from_url(AZURE_DEVOPS_ORG_URL)


def get_base_url() -> str:
    """Retorna la URL base de la API de Azure DevOps."""
    return (AZURE_DEVOPS_ORG_URL or "").rstrip("/")


async def get_auth_header() -> str:
    """
    Genera el header de autenticación para Azure DevOps.

    Con AZURE_DEVOPS_AUTH_METHOD=pat se usa Basic con el PAT; en cualquier
    otro caso se pide un token a Azure AD (Azure CLI o DefaultAzureCredential)
    con las credenciales asíncronas de azure-identity, que se cierran al terminar.
    """
    method = (AZURE_DEVOPS_AUTH_METHOD or "").lower()
    try:
        if method == "pat" and AZURE_DEVOPS_PAT:
            credentials = f":{AZURE_DEVOPS_PAT}"
            encoded = base64.b64encode(credentials.encode()).decode()
            return f"Basic {encoded}"

        credential = AzureCliCredential() if method == "azure-cli" else DefaultAzureCredential()
        async with credential:
            token = await credential.get_token(f"{AZURE_DEVOPS_RESOURCE_ID}/.default")
        if not token or not token.token:
            raise ValueError("Failed to acquire token for Azure DevOps")
        return f"Bearer {token.token}"
    except Exception as e:
        raise AzureDevOpsAuthenticationError(f"Failed to get authorization header: {e}") from e


def resolve_project(project_name: Optional[str]) -> str:
    """
    Resuelve el proyecto de una llamada.

    Args:
        project_name: Nombre del proyecto indicado por el agente (puede ser None)

    Returns:
        El proyecto indicado o, si no hay, el proyecto por defecto
    """
    project = project_name or AZURE_DEVOPS_DEFAULT_PROJECT
    if not project:
        raise AzureDevOpsValidationError(
            "Project name is required (no AZURE_DEVOPS_DEFAULT_PROJECT configured)"
        )
    return project


def create_client(auth_header: str) -> httpx.AsyncClient:
    """Crea el cliente HTTP usado por las tools, con el header de autenticación fijo."""
    return httpx.AsyncClient(
        timeout=AZURE_DEVOPS_HTTP_TIMEOUT,
        headers={"Authorization": auth_header},
    )


@asynccontextmanager
async def connect() -> AsyncIterator[httpx.AsyncClient]:
    """
    Cliente autenticado para una llamada a una tool.

    El header se resuelve una sola vez y lo comparten todas las peticiones
    de la llamada.
    """
    auth_header = await get_auth_header()
    async with create_client(auth_header) as client:
        yield client


def validate_config() -> List[str]:
    """Retorna la lista de problemas de configuración (vacía si todo está bien)."""
    problems = []
    if not AZURE_DEVOPS_ORG_URL:
        problems.append("AZURE_DEVOPS_ORG_URL (o AZURE_DEVOPS_ORGANIZATION) debe estar configurado")
    if AZURE_DEVOPS_AUTH_METHOD.lower() == "pat" and not AZURE_DEVOPS_PAT:
        problems.append("AZURE_DEVOPS_PAT debe estar configurado cuando AZURE_DEVOPS_AUTH_METHOD=pat")
    if MCP_TRANSPORT not in ("stdio", "http", "sse"):
        problems.append(f"MCP_TRANSPORT no soportado: {MCP_TRANSPORT}")
    return problems
