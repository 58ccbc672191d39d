# tools/work_items.py
import logging
from typing import Annotated, Any, Dict, List, Literal, Optional
from urllib.parse import quote

import httpx
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from ado_mcp import azure_devops_config as config
from ado_mcp.errors import (
    AzureDevOpsError,
    AzureDevOpsResourceNotFoundError,
    AzureDevOpsValidationError,
    raise_for_status,
)
from ado_mcp.wiql import construct_default_wiql, ensure_project_scope

logger = logging.getLogger(__name__)

# Campos devueltos por list_work_items
WORK_ITEM_FIELDS = [
    "System.Id",
    "System.Title",
    "System.State",
    "System.AssignedTo",
]

# Máximo de IDs por llamada a _apis/wit/workitems
WORK_ITEMS_BATCH_SIZE = 200

PARENT_RELATION = "System.LinkTypes.Hierarchy-Reverse"

Expand = Literal["none", "relations", "fields", "links", "all"]
LinkOperation = Literal["add", "remove", "update"]

HTML_HINT = (
    "Multi-line text fields (i.e., System.History, AcceptanceCriteria, etc.) "
    "must use HTML format. Do not use CDATA tags."
)


def _headers(content_type: str = "application/json") -> Dict[str, str]:
    return {"Content-Type": content_type}


def _team_path(project_name: str, team_id: Optional[str]) -> str:
    path = f"{config.get_base_url()}/{quote(project_name, safe='')}"
    if team_id:
        path += f"/{quote(team_id, safe='')}"
    return path


def _work_item_url(work_item_id: int) -> str:
    return f"{config.get_base_url()}/_apis/wit/workItems/{work_item_id}"


def _field_operations(fields: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Operaciones JSON-patch "add" para los campos con valor."""
    return [
        {"op": "add", "path": f"/fields/{name}", "value": value}
        for name, value in fields.items()
        if value is not None
    ]


async def _fetch_work_items(client: httpx.AsyncClient, ids: List[int]) -> List[Dict[str, Any]]:
    url = f"{config.get_base_url()}/_apis/wit/workitems"
    work_items = []
    for start in range(0, len(ids), WORK_ITEMS_BATCH_SIZE):
        batch = ids[start:start + WORK_ITEMS_BATCH_SIZE]
        response = await client.get(
            url,
            params={
                "ids": ",".join(str(i) for i in batch),
                "fields": ",".join(WORK_ITEM_FIELDS),
                "errorPolicy": "omit",
                "api-version": config.AZURE_DEVOPS_API_VERSION,
            },
            headers=_headers(),
        )
        raise_for_status(response, "list work items")
        work_items.extend(wi for wi in response.json().get("value") or [] if wi)
    return work_items


async def list_work_items(
    client: httpx.AsyncClient,
    project_name: str,
    team_id: Optional[str] = None,
    query_id: Optional[str] = None,
    wiql: Optional[str] = None,
    top: Optional[int] = 200,
    skip: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    Lista work items de un proyecto.

    Si hay query_id se ejecuta la query guardada (y se ignora wiql); si no,
    se ejecuta wiql restringido al proyecto o la consulta por defecto. La
    paginación (skip/top) se aplica en memoria sobre las referencias.

    Args:
        client: Cliente HTTP autenticado (ver config.connect)
        project_name: Nombre del proyecto
        team_id: ID del equipo
        query_id: ID de una query guardada
        wiql: Consulta WIQL
        top: Número máximo de work items
        skip: Número de work items a saltar

    Returns:
        Lista de work items con los campos de WORK_ITEM_FIELDS
    """
    try:
        base = _team_path(project_name, team_id)
        params = {"api-version": config.AZURE_DEVOPS_API_VERSION}

        if query_id:
            logger.info("Running saved query %s in project %s", query_id, project_name)
            response = await client.get(
                f"{base}/_apis/wit/wiql/{quote(query_id, safe='')}",
                params=params,
                headers=_headers(),
            )
        else:
            if wiql:
                query = ensure_project_scope(wiql, project_name)
            else:
                query = construct_default_wiql(project_name, team_id)
            logger.info("Running WIQL in project %s: %s", project_name, query)
            response = await client.post(
                f"{base}/_apis/wit/wiql",
                params=params,
                headers=_headers(),
                json={"query": query},
            )
        raise_for_status(response, "list work items")

        work_item_refs = response.json().get("workItems") or []

        if skip is not None:
            work_item_refs = work_item_refs[skip:]
        if top is not None:
            work_item_refs = work_item_refs[:top]

        ids = [ref["id"] for ref in work_item_refs if ref.get("id") is not None]
        if not ids:
            return []

        return await _fetch_work_items(client, ids)
    except AzureDevOpsError:
        raise
    except Exception as e:
        raise AzureDevOpsError(f"Failed to list work items: {e}") from e


async def get_work_item(
    client: httpx.AsyncClient,
    work_item_id: int,
    expand: Expand = "all",
) -> Dict[str, Any]:
    """Obtiene un work item por ID."""
    try:
        response = await client.get(
            f"{config.get_base_url()}/_apis/wit/workitems/{work_item_id}",
            params={"$expand": expand, "api-version": config.AZURE_DEVOPS_API_VERSION},
            headers=_headers(),
        )
        if response.status_code == 404:
            raise AzureDevOpsResourceNotFoundError(
                f"Work item '{work_item_id}' not found", status_code=404
            )
        raise_for_status(response, "get work item")
        return response.json()
    except AzureDevOpsError:
        raise
    except Exception as e:
        raise AzureDevOpsError(f"Failed to get work item: {e}") from e


async def create_work_item(
    client: httpx.AsyncClient,
    project_name: str,
    work_item_type: str,
    title: str,
    description: Optional[str] = None,
    assigned_to: Optional[str] = None,
    area_path: Optional[str] = None,
    iteration_path: Optional[str] = None,
    priority: Optional[int] = None,
    parent_id: Optional[int] = None,
    original_estimate: Optional[float] = None,
    additional_fields: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Crea un work item.

    Args:
        client: Cliente HTTP autenticado (ver config.connect)
        project_name: Nombre del proyecto
        work_item_type: Tipo de work item (Task, Bug, User Story...)
        title: Título (obligatorio)
        description: Descripción en HTML
        assigned_to: Nombre del usuario asignado
        area_path: Area path
        iteration_path: Iteration path
        priority: Prioridad
        parent_id: ID del work item padre
        original_estimate: Estimación original en horas (obligatoria para Task)
        additional_fields: Otros campos por nombre de referencia

    Returns:
        El work item creado
    """
    if not title:
        raise AzureDevOpsValidationError("Title is required")
    if work_item_type == "Task" and original_estimate is None:
        raise AzureDevOpsValidationError('original_estimate is required when work_item_type is "Task"')

    try:
        document = _field_operations({
            "System.Title": title,
            "System.Description": description,
            "System.AssignedTo": assigned_to,
            "System.AreaPath": area_path,
            "System.IterationPath": iteration_path,
            "Microsoft.VSTS.Common.Priority": priority,
            "Microsoft.VSTS.Scheduling.OriginalEstimate": original_estimate,
            **(additional_fields or {}),
        })

        if parent_id is not None:
            document.append({
                "op": "add",
                "path": "/relations/-",
                "value": {"rel": PARENT_RELATION, "url": _work_item_url(parent_id)},
            })

        url = (
            f"{config.get_base_url()}/{quote(project_name, safe='')}"
            f"/_apis/wit/workitems/${quote(work_item_type, safe='')}"
        )
        logger.info("Creating %s in project %s: %s", work_item_type, project_name, title)
        response = await client.post(
            url,
            params={"api-version": config.AZURE_DEVOPS_API_VERSION},
            headers=_headers("application/json-patch+json"),
            json=document,
        )
        raise_for_status(response, "create work item")
        return response.json()
    except AzureDevOpsError:
        raise
    except Exception as e:
        raise AzureDevOpsError(f"Failed to create work item: {e}") from e


async def update_work_item(
    client: httpx.AsyncClient,
    work_item_id: int,
    title: Optional[str] = None,
    description: Optional[str] = None,
    assigned_to: Optional[str] = None,
    area_path: Optional[str] = None,
    iteration_path: Optional[str] = None,
    priority: Optional[int] = None,
    state: Optional[str] = None,
    additional_fields: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Actualiza los campos indicados de un work item."""
    document = _field_operations({
        "System.Title": title,
        "System.Description": description,
        "System.AssignedTo": assigned_to,
        "System.AreaPath": area_path,
        "System.IterationPath": iteration_path,
        "Microsoft.VSTS.Common.Priority": priority,
        "System.State": state,
        **(additional_fields or {}),
    })
    if not document:
        raise AzureDevOpsValidationError("At least one field must be provided to update")

    return await _patch_work_item(client, work_item_id, document, "update work item")


async def _patch_work_item(
    client: httpx.AsyncClient,
    work_item_id: int,
    document: List[Dict[str, Any]],
    action: str,
) -> Dict[str, Any]:
    try:
        logger.info("Patching work item %s with %d operation(s)", work_item_id, len(document))
        response = await client.patch(
            f"{config.get_base_url()}/_apis/wit/workitems/{work_item_id}",
            params={"api-version": config.AZURE_DEVOPS_API_VERSION},
            headers=_headers("application/json-patch+json"),
            json=document,
        )
        if response.status_code == 404:
            raise AzureDevOpsResourceNotFoundError(
                f"Work item '{work_item_id}' not found", status_code=404
            )
        raise_for_status(response, action)
        return response.json()
    except AzureDevOpsError:
        raise
    except Exception as e:
        raise AzureDevOpsError(f"Failed to {action}: {e}") from e


def _find_relation(relations: List[Dict[str, Any]], relation_type: str, target_id: int) -> int:
    suffix = f"/workitems/{target_id}"
    for index, relation in enumerate(relations):
        if (
            relation.get("rel", "").lower() == relation_type.lower()
            and relation.get("url", "").lower().endswith(suffix)
        ):
            return index
    return -1


async def manage_work_item_link(
    client: httpx.AsyncClient,
    source_work_item_id: int,
    target_work_item_id: int,
    operation: LinkOperation,
    relation_type: str,
    new_relation_type: Optional[str] = None,
    comment: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Añade, elimina o cambia el tipo de un enlace entre dos work items.

    Args:
        client: Cliente HTTP autenticado (ver config.connect)
        source_work_item_id: Work item origen (el que se modifica)
        target_work_item_id: Work item destino
        operation: add, remove o update
        relation_type: Tipo de relación, p. ej. System.LinkTypes.Hierarchy-Forward
        new_relation_type: Nuevo tipo de relación (solo update)
        comment: Comentario del enlace

    Returns:
        El work item origen actualizado
    """
    if operation == "update" and not new_relation_type:
        raise AzureDevOpsValidationError("new_relation_type is required for update operation")

    new_relation = {
        "rel": new_relation_type if operation == "update" else relation_type,
        "url": _work_item_url(target_work_item_id),
    }
    if comment:
        new_relation["attributes"] = {"comment": comment}

    if operation == "add":
        document = [{"op": "add", "path": "/relations/-", "value": new_relation}]
    else:
        source = await get_work_item(client, source_work_item_id, expand="relations")
        index = _find_relation(source.get("relations") or [], relation_type, target_work_item_id)
        if index < 0:
            raise AzureDevOpsResourceNotFoundError(
                f"No {relation_type} link from work item {source_work_item_id} "
                f"to work item {target_work_item_id}"
            )
        document = [{"op": "remove", "path": f"/relations/{index}"}]
        if operation == "update":
            document.append({"op": "add", "path": "/relations/-", "value": new_relation})

    return await _patch_work_item(client, source_work_item_id, document, "manage work item link")


def register_work_item_tools(mcp: FastMCP) -> None:

    @mcp.tool(name="list_work_items")
    async def list_work_items_tool(
        project_name: Annotated[Optional[str], Field(
            description=f"Nombre del proyecto (por defecto: {config.default_project})")] = None,
        team_id: Annotated[Optional[str], Field(description="ID del equipo")] = None,
        query_id: Annotated[Optional[str], Field(description="ID de una query guardada")] = None,
        wiql: Annotated[Optional[str], Field(
            description="Consulta WIQL. Only select System.Id. Use displayName to filter by System.AssignedTo.")] = None,
        top: Annotated[int, Field(ge=1, description="Número máximo de work items")] = 200,
        skip: Annotated[Optional[Annotated[int, Field(ge=0)]], Field(description="Número de work items a saltar")] = None,
    ) -> List[Dict[str, Any]]:
        """
        Lista work items de un proyecto de Azure DevOps, con la consulta por
        defecto, una consulta WIQL o una query guardada.

        Returns:
            Work items con ID, título, estado y asignado
        """
        try:
            async with config.connect() as client:
                return await list_work_items(
                    client,
                    config.resolve_project(project_name),
                    team_id=team_id,
                    query_id=query_id,
                    wiql=wiql,
                    top=top,
                    skip=skip,
                )
        except AzureDevOpsError as e:
            raise ToolError(str(e)) from e

    @mcp.tool(name="get_work_item")
    async def get_work_item_tool(
        work_item_id: Annotated[int, Field(description="ID del work item")],
        expand: Annotated[Expand, Field(
            description='Nivel de detalle de la respuesta. Defaults to "all".')] = "all",
    ) -> Dict[str, Any]:
        """Obtiene un work item de Azure DevOps por su ID."""
        try:
            async with config.connect() as client:
                return await get_work_item(client, work_item_id, expand)
        except AzureDevOpsError as e:
            raise ToolError(str(e)) from e

    @mcp.tool(name="create_work_item")
    async def create_work_item_tool(
        work_item_type: Annotated[str, Field(
            description='Tipo de work item (e.g., "Task", "Bug", "User Story")')],
        title: Annotated[str, Field(description="Título del work item")],
        project_name: Annotated[Optional[str], Field(
            description=f"Nombre del proyecto (por defecto: {config.default_project})")] = None,
        description: Annotated[Optional[str], Field(
            description=f"Descripción en HTML. {HTML_HINT}")] = None,
        assigned_to: Annotated[Optional[str], Field(
            description="Nombre visible del usuario asignado")] = None,
        area_path: Annotated[Optional[str], Field(description="Area path")] = None,
        iteration_path: Annotated[Optional[str], Field(description="Iteration path")] = None,
        priority: Annotated[Optional[int], Field(description="Prioridad")] = None,
        parent_id: Annotated[Optional[int], Field(description="ID del work item padre")] = None,
        original_estimate: Annotated[Optional[float], Field(
            description="Estimación original en horas (obligatoria para Task)")] = None,
        additional_fields: Annotated[Optional[Dict[str, Any]], Field(
            description=f"Campos adicionales por nombre de referencia. {HTML_HINT}")] = None,
    ) -> Dict[str, Any]:
        """
        Crea un work item en Azure DevOps.

        Returns:
            El work item creado
        """
        try:
            async with config.connect() as client:
                return await create_work_item(
                    client,
                    config.resolve_project(project_name),
                    work_item_type,
                    title,
                    description=description,
                    assigned_to=assigned_to,
                    area_path=area_path,
                    iteration_path=iteration_path,
                    priority=priority,
                    parent_id=parent_id,
                    original_estimate=original_estimate,
                    additional_fields=additional_fields,
                )
        except AzureDevOpsError as e:
            raise ToolError(str(e)) from e

    @mcp.tool(name="update_work_item")
    async def update_work_item_tool(
        work_item_id: Annotated[int, Field(description="ID del work item a actualizar")],
        title: Annotated[Optional[str], Field(description="Nuevo título")] = None,
        description: Annotated[Optional[str], Field(
            description=f"Nueva descripción en HTML. {HTML_HINT}")] = None,
        assigned_to: Annotated[Optional[str], Field(
            description="Nombre visible del usuario asignado")] = None,
        area_path: Annotated[Optional[str], Field(description="Nuevo area path")] = None,
        iteration_path: Annotated[Optional[str], Field(description="Nuevo iteration path")] = None,
        priority: Annotated[Optional[int], Field(description="Nueva prioridad")] = None,
        state: Annotated[Optional[str], Field(description="Nuevo estado")] = None,
        additional_fields: Annotated[Optional[Dict[str, Any]], Field(
            description=f"Campos adicionales por nombre de referencia. {HTML_HINT}")] = None,
    ) -> Dict[str, Any]:
        """Actualiza un work item existente en Azure DevOps."""
        try:
            async with config.connect() as client:
                return await update_work_item(
                    client,
                    work_item_id,
                    title=title,
                    description=description,
                    assigned_to=assigned_to,
                    area_path=area_path,
                    iteration_path=iteration_path,
                    priority=priority,
                    state=state,
                    additional_fields=additional_fields,
                )
        except AzureDevOpsError as e:
            raise ToolError(str(e)) from e

    @mcp.tool(name="manage_work_item_link")
    async def manage_work_item_link_tool(
        source_work_item_id: Annotated[int, Field(description="ID del work item origen")],
        target_work_item_id: Annotated[int, Field(description="ID del work item destino")],
        operation: Annotated[LinkOperation, Field(description="Operación sobre el enlace")],
        relation_type: Annotated[str, Field(
            description='Tipo de relación (e.g., "System.LinkTypes.Hierarchy-Forward")')],
        new_relation_type: Annotated[Optional[str], Field(
            description="Nuevo tipo de relación (solo para update)")] = None,
        comment: Annotated[Optional[str], Field(description="Comentario del enlace")] = None,
    ) -> Dict[str, Any]:
        """Añade, elimina o actualiza un enlace entre dos work items."""
        try:
            async with config.connect() as client:
                return await manage_work_item_link(
                    client,
                    source_work_item_id,
                    target_work_item_id,
                    operation,
                    relation_type,
                    new_relation_type=new_relation_type,
                    comment=comment,
                )
        except AzureDevOpsError as e:
            raise ToolError(str(e)) from e
