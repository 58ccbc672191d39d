# tools/time_logs.py
import logging
import re
from datetime import date as Date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, get_args

import httpx
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from ado_mcp import azure_devops_config as config
from ado_mcp.errors import AzureDevOpsError, AzureDevOpsValidationError, raise_for_status
from ado_mcp.tools.users import get_me

logger = logging.getLogger(__name__)

TIME_LOG_PATH = (
    "/_apis/ExtensionManagement/InstalledExtensions/timelog/time-logging-extension"
    "/Data/Scopes/Default/Current/Collections/TimeLogData/Documents"
)
TIME_LOG_ACCEPT = "application/json;api-version=3.1-preview.1;excludeUrls=true"

TimeLogType = Literal[
    "Administration",
    "Analysis",
    "Deployment",
    "Design",
    "Development - Production Support",
    "Development - Project",
    "Documentation",
    "Leave - Annual",
    "Leave - Other",
    "Leave - Sick",
    "Lost Time",
    "Meeting",
    "Planning",
    "Public Holiday",
    "Research",
    "Routine Support",
    "Self Training",
    "Testing",
    "Time Off",
    "Training",
    "Troubleshooting",
    "User Support",
]
TIME_LOG_TYPES = get_args(TimeLogType)

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
WEEK_PATTERN = r"^\d{4}-W\d{2}$"

IsoDate = Annotated[str, Field(pattern=DATE_PATTERN)]
IsoWeek = Annotated[str, Field(pattern=WEEK_PATTERN)]


def _time_log_url() -> str:
    return f"{config.get_base_url()}{TIME_LOG_PATH}"


def _headers() -> Dict[str, str]:
    return {
        "Accept": TIME_LOG_ACCEPT,
        "Content-Type": "application/json",
    }


def _parse_date(value: str) -> Date:
    try:
        if not re.fullmatch(DATE_PATTERN, value):
            raise ValueError(value)
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise AzureDevOpsValidationError(f"Date must be in YYYY-MM-DD format: {value!r}") from None


def get_iso_week(value: str) -> str:
    """
    Semana ISO de una fecha.

    Args:
        value: Fecha en formato YYYY-MM-DD

    Returns:
        Semana en formato YYYY-Www (año ISO, que puede no coincidir con el año de la fecha)
    """
    iso_year, iso_week, _ = _parse_date(value).isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


async def create_time_log(
    client: httpx.AsyncClient,
    minutes: int,
    date: str,
    work_item_id: int,
    type: str,
    comment: str,
) -> Dict[str, Any]:
    """
    Registra tiempo sobre un work item en la extensión Time Log.

    Args:
        client: Cliente HTTP autenticado (ver config.connect)
        minutes: Minutos dedicados (>= 1)
        date: Fecha en formato YYYY-MM-DD
        work_item_id: ID del work item
        type: Tipo de actividad (ver TIME_LOG_TYPES)
        comment: Descripción del trabajo

    Returns:
        La entrada creada, con el ID asignado por el servidor
    """
    try:
        if not minutes or minutes < 1:
            raise AzureDevOpsValidationError("Minutes must be a positive number")
        if not date:
            raise AzureDevOpsValidationError("Date is required")
        if not work_item_id:
            raise AzureDevOpsValidationError("Work item ID is required")
        if not type:
            raise AzureDevOpsValidationError("Type is required")
        if type not in TIME_LOG_TYPES:
            raise AzureDevOpsValidationError(f"Unknown time log type: {type}")
        if not comment:
            raise AzureDevOpsValidationError("Comment is required")

        date_week = get_iso_week(date)
        me = await get_me(client)

        payload = {
            "minutes": minutes,
            "user": me["displayName"] or config.AZURE_DEVOPS_USERNAME or "Unknown User",
            "userId": me["id"] or "Unknown User ID",
            "date": date,
            "dateWeek": date_week,
            "workItemId": work_item_id,
            "type": type,
            "comment": comment,
        }
        logger.info("[TimeLog] Creating time log entry: %s", payload)

        response = await client.post(_time_log_url(), headers=_headers(), json=payload)
        raise_for_status(response, "create time log entry")

        data = response.json() if response.content else {}
        return {"id": data.get("id") or "unknown", **payload}
    except AzureDevOpsValidationError as e:
        logger.warning("[TimeLog] Invalid time log entry: %s", e)
        raise
    except AzureDevOpsError:
        logger.exception("[TimeLog] Error creating time log entry")
        raise
    except Exception as e:
        logger.exception("[TimeLog] Error creating time log entry")
        raise AzureDevOpsError(f"Failed to create time log entry: {e}") from e


async def read_time_logs(
    client: httpx.AsyncClient,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    date_week: Optional[str] = None,
    work_item_ids: Optional[List[int]] = None,
) -> List[Dict[str, Any]]:
    """
    Lee las entradas de tiempo del usuario actual.

    Los filtros de fecha son inclusivos y comparan cadenas YYYY-MM-DD. El
    resultado se ordena por fecha, de la más reciente a la más antigua.
    """
    try:
        logger.info(
            "[TimeLog] Reading time log entries (date_from=%s, date_to=%s, date_week=%s, work_item_ids=%s)",
            date_from, date_to, date_week, work_item_ids,
        )

        response = await client.get(_time_log_url(), headers=_headers())
        raise_for_status(response, "read time log entries")

        data = response.json()
        entries = data.get("value") or []
        logger.debug("[TimeLog] Retrieved %s total time log entries", data.get("count", len(entries)))

        me = await get_me(client)
        if me["id"]:
            entries = [entry for entry in entries if entry.get("userId") == me["id"]]
            logger.debug("[TimeLog] Filtered to %d entries for current user", len(entries))

        if date_from or date_to:
            entries = [
                entry for entry in entries
                if not (date_from and entry.get("date", "") < date_from)
                and not (date_to and entry.get("date", "") > date_to)
            ]
            logger.debug("[TimeLog] After date filtering: %d entries", len(entries))

        if date_week:
            entries = [entry for entry in entries if entry.get("dateWeek") == date_week]
            logger.debug("[TimeLog] After date week filtering: %d entries", len(entries))

        if work_item_ids:
            entries = [entry for entry in entries if entry.get("workItemId") in work_item_ids]
            logger.debug("[TimeLog] After work item filtering: %d entries", len(entries))

        entries.sort(key=lambda entry: entry.get("date", ""), reverse=True)
        return entries
    except AzureDevOpsValidationError as e:
        logger.warning("[TimeLog] Invalid time log query: %s", e)
        raise
    except AzureDevOpsError:
        logger.exception("[TimeLog] Error reading time log entries")
        raise
    except Exception as e:
        logger.exception("[TimeLog] Error reading time log entries")
        raise AzureDevOpsError(f"Failed to read time log entries: {e}") from e


def register_time_log_tools(mcp: FastMCP) -> None:

    @mcp.tool(name="create_time_log")
    async def create_time_log_tool(
        minutes: Annotated[int, Field(ge=1, description="Minutos dedicados al work item")],
        date: Annotated[IsoDate, Field(description="Fecha en formato YYYY-MM-DD")],
        work_item_id: Annotated[int, Field(gt=0, description="ID del work item")],
        type: Annotated[TimeLogType, Field(
            description='Tipo de trabajo (e.g., "Development - Project", "Testing", "Deployment")')],
        comment: Annotated[str, Field(min_length=1, description="Descripción del trabajo realizado")],
    ) -> Dict[str, Any]:
        """
        Registra una entrada de tiempo para un work item.

        Returns:
            La entrada creada
        """
        try:
            async with config.connect() as client:
                return await create_time_log(client, minutes, date, work_item_id, type, comment)
        except AzureDevOpsError as e:
            raise ToolError(str(e)) from e

    @mcp.tool(name="read_time_logs")
    async def read_time_logs_tool(
        date_from: Annotated[Optional[IsoDate], Field(
            description="Fecha inicial (YYYY-MM-DD, inclusiva)")] = None,
        date_to: Annotated[Optional[IsoDate], Field(
            description="Fecha final (YYYY-MM-DD, inclusiva)")] = None,
        date_week: Annotated[Optional[IsoWeek], Field(
            description="Semana ISO (YYYY-Www)")] = None,
        work_item_ids: Annotated[Optional[List[int]], Field(
            description="IDs de work items a incluir")] = None,
    ) -> List[Dict[str, Any]]:
        """
        Lee las entradas de tiempo del usuario autenticado, más recientes primero.

        Returns:
            Entradas de tiempo filtradas
        """
        try:
            async with config.connect() as client:
                return await read_time_logs(
                    client,
                    date_from=date_from,
                    date_to=date_to,
                    date_week=date_week,
                    work_item_ids=work_item_ids,
                )
        except AzureDevOpsError as e:
            raise ToolError(str(e)) from e
