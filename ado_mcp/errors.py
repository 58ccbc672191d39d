"""
Errores de Azure DevOps
Jerarquía de excepciones que las tools convierten en errores MCP
"""

from typing import Optional

import httpx


class AzureDevOpsError(Exception):
    """Error base de Azure DevOps."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AzureDevOpsAuthenticationError(AzureDevOpsError):
    """Credenciales inválidas o imposibles de obtener."""


class AzureDevOpsPermissionError(AzureDevOpsAuthenticationError):
    """La identidad autenticada no tiene permisos sobre el recurso."""


class AzureDevOpsResourceNotFoundError(AzureDevOpsError):
    """El recurso (proyecto, work item, query...) no existe."""


class AzureDevOpsValidationError(AzureDevOpsError):
    """Argumentos inválidos, detectados localmente o por el servidor (400)."""


class AzureDevOpsRateLimitError(AzureDevOpsError):
    """Demasiadas peticiones (429)."""


_STATUS_ERRORS = {
    400: AzureDevOpsValidationError,
    401: AzureDevOpsAuthenticationError,
    403: AzureDevOpsPermissionError,
    404: AzureDevOpsResourceNotFoundError,
    429: AzureDevOpsRateLimitError,
}


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(data, dict) and data.get("message"):
        return data["message"]
    return response.text[:500]


def raise_for_status(response: httpx.Response, action: str) -> None:
    """
    Lanza la excepción que corresponde al código HTTP de la respuesta.

    Args:
        response: Respuesta de la API de Azure DevOps
        action: Descripción de la operación, p. ej. "list work items"
    """
    if response.is_success:
        return

    status = response.status_code
    error_class = _STATUS_ERRORS.get(status, AzureDevOpsError)
    message = f"Failed to {action}: HTTP {status} {response.reason_phrase}"
    detail = _error_detail(response)
    if detail:
        message += f" - {detail}"
    raise error_class(message, status_code=status)
