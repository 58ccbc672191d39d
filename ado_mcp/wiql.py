"""
Consultas WIQL (Work Item Query Language)
Construcción de la consulta por defecto y restricción de consultas al proyecto
"""

import logging
import re
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

_PROJECT_CONSTRAINT = re.compile(r"\[System\.TeamProject\]\s*=", re.IGNORECASE)
# El final puede ir pegado a un paréntesis, un campo o un literal
_TRAILING_CLAUSE = re.compile(
    r"(?:\s+|(?<=[)\]']))(?:GROUP\s+BY|ORDER\s+BY|ASOF|MODE)\b",
    re.IGNORECASE,
)
_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)


def quote(value: str) -> str:
    """Literal WIQL entre comillas simples (las comillas internas se duplican)."""
    return "'" + value.replace("'", "''") + "'"


def _is_code_position(query: str, index: int) -> bool:
    # False si index cae dentro de un literal '...' o de un nombre de campo [...]
    in_string = False
    in_brackets = False
    for ch in query[:index]:
        if in_string:
            if ch == "'":
                in_string = False
        elif in_brackets:
            if ch == "]":
                in_brackets = False
        elif ch == "'":
            in_string = True
        elif ch == "[":
            in_brackets = True
    return not in_string and not in_brackets


def _code_matches(pattern: re.Pattern, query: str) -> Iterator[re.Match]:
    for match in pattern.finditer(query):
        if _is_code_position(query, match.start()):
            yield match


def _first_code_match(pattern: re.Pattern, query: str) -> Optional[re.Match]:
    return next(_code_matches(pattern, query), None)


def has_project_constraint(wiql: str) -> bool:
    """Indica si la consulta ya filtra por [System.TeamProject]."""
    return _first_code_match(_PROJECT_CONSTRAINT, wiql) is not None


def construct_default_wiql(project_name: str, team_id: Optional[str] = None) -> str:
    """
    Construye la consulta WIQL por defecto para listar work items.

    Args:
        project_name: Nombre del proyecto
        team_id: ID del equipo (opcional)

    Returns:
        Consulta WIQL que selecciona System.Id ordenado por ID
    """
    query = f"SELECT [System.Id] FROM WorkItems WHERE [System.TeamProject] = {quote(project_name)}"
    if team_id:
        query += f" AND [System.TeamId] = {quote(team_id)}"
    query += " ORDER BY [System.Id]"
    return query


def ensure_project_scope(wiql: str, project_name: str) -> str:
    """
    Restringe una consulta WIQL al proyecto indicado.

    Si la consulta ya tiene una condición sobre [System.TeamProject] se
    devuelve sin cambios. Si no, la condición se antepone a la cláusula
    WHERE existente (envolviendo la condición original entre paréntesis) o
    se añade una cláusula WHERE nueva. Las cláusulas finales (GROUP BY,
    ORDER BY, ASOF, MODE) se separan antes y se vuelven a añadir tal cual.

    Args:
        wiql: Consulta escrita por el agente (puede estar mal formada)
        project_name: Nombre del proyecto

    Returns:
        Consulta WIQL restringida al proyecto
    """
    if has_project_constraint(wiql):
        return wiql

    working_query = wiql.strip()
    trailing_clauses = ""

    trailing_match = _first_code_match(_TRAILING_CLAUSE, working_query)
    if trailing_match:
        trailing_clauses = working_query[trailing_match.start():]
        working_query = working_query[:trailing_match.start()]

    constraint = f"[System.TeamProject] = {quote(project_name)}"
    where_match = _first_code_match(_WHERE, working_query)

    if where_match:
        before_where = working_query[:where_match.end()]
        condition = working_query[where_match.end():].strip()
        if condition:
            result = f"{before_where} {constraint} AND ({condition})"
        else:
            result = f"{before_where} {constraint}"
    else:
        result = f"{working_query.strip()} WHERE {constraint}"

    if trailing_clauses and not trailing_clauses[0].isspace():
        result += " "
    result += trailing_clauses

    logger.debug("Modified WIQL to ensure project scope: %s", result)
    return result
