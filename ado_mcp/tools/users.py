# tools/users.py
import logging
from typing import Dict, TypedDict

import httpx
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from ado_mcp import azure_devops_config as config
from ado_mcp.errors import (
    AzureDevOpsAuthenticationError,
    AzureDevOpsError,
    raise_for_status,
)

logger = logging.getLogger(__name__)


class UserProfile(TypedDict):
    id: str
    displayName: str
    email: str


async def get_me(client: httpx.AsyncClient) -> UserProfile:
    """
    Obtiene el perfil del usuario autenticado.

    Args:
        client: Cliente HTTP autenticado (ver config.connect)

    Returns:
        Perfil con id, displayName y email
    """
    url = f"{config.get_base_url()}/_apis/identities"
    params = {
        "searchFilter": "AccountName",
        "filterValue": config.AZURE_DEVOPS_USERNAME or "",
        "api-version": "6.0",
    }

    try:
        response = await client.get(
            url,
            params=params,
            headers={"Content-Type": "application/json"},
        )
        if response.status_code in (401, 403):
            raise AzureDevOpsAuthenticationError(
                f"Authentication failed: HTTP {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        raise_for_status(response, "get user information")

        user_data = next(iter(response.json().get("value") or []), None)
        if not user_data:
            raise AzureDevOpsError("No user data found in response")

        mail = (user_data.get("properties") or {}).get("Mail") or {}
        return {
            "id": user_data.get("id") or "",
            "displayName": user_data.get("providerDisplayName") or "",
            "email": mail.get("$value") or "",
        }
    except AzureDevOpsError:
        raise
    except Exception as e:
        raise AzureDevOpsError(f"Failed to get user information: {e}") from e


def register_user_tools(mcp: FastMCP) -> None:

    @mcp.tool(name="get_me")
    async def get_me_tool() -> Dict[str, str]:
        """
        Obtiene los datos del usuario autenticado en Azure DevOps.

        Returns:
            id, displayName y email del usuario
        """
        try:
            async with config.connect() as client:
                return await get_me(client)
        except AzureDevOpsError as e:
            raise ToolError(str(e)) from e
