"""MCP tool catalog for rzmx-mcp-server.

This module defines the tools exposed to clients and the argument checks
run before any upstream call. Each tool name is also the name of the
upstream operation that backs it.
"""

import logging
from enum import Enum
from types import MappingProxyType
from typing import Optional

from mcp.types import Tool

from errors import ValidationError

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    AUTHENTICATE = "authenticate"
    LIST_USER_STORIES = "list_user_stories"
    GET_STORY_RANGE = "get_story_range"
    GET_SINGLE_STORY_DETAILS = "get_single_story_details"
    GET_PROJECT_OVERVIEW = "get_project_overview"
    GET_PERSONA_PROFILE = "get_persona_profile"
    GET_USER_JOURNEY = "get_user_journey"
    GET_JOBS_TO_BE_DONE = "get_jobs_to_be_done"
    GET_USER_INFO = "get_user_info"
    GET_PROJECT_ENVIRONMENT = "get_project_environment"
    CHECK_NDA_STATUS = "check_nda_status"
    GET_PRODUCT_INFO = "get_product_info"
    LIST_PROJECTS = "list_projects"
    FIND_PROJECT_BY_NAME = "find_project_by_name"
    FIND_PERSONA_BY_NAME = "find_persona_by_name"
    GET_USER_STORIES_BY_NAME = "get_user_stories_by_name"
    GET_PERSONA_BY_NAME = "get_persona_by_name"
    GET_PROJECT_BY_NAME = "get_project_by_name"
    LEGACY_GET_USER_INFO = "mcp0_getUserInfo"
    LEGACY_FETCH_PERSONA = "mcp0_fetchPersona"
    LEGACY_FETCH_ELEVATOR_PITCH = "mcp0_fetchElevatorPitch"
    LEGACY_FETCH_VISION_STATEMENT = "mcp0_fetchVisionStatement"
    LEGACY_FETCH_PRODUCT_INFO = "mcp0_fetchProductInfo"
    LEGACY_FETCH_PROJECT_ENVIRONMENT = "mcp0_fetchProjectEnvironment"
    LEGACY_CHECK_NDA_STATUS = "mcp0_checkNdaStatus"

    @classmethod
    def parse(cls, name) -> Optional["ToolName"]:
        try:
            return cls(name)
        except ValueError:
            return None


# The one tool whose execution is itself an authentication action
AUTHENTICATE_TOOL = ToolName.AUTHENTICATE


def _string(description: str) -> dict:
    return {"type": "string", "description": description}


def _story_number(description: str) -> dict:
    return {"type": "integer", "description": description, "minimum": 1}


def _schema(properties: dict = None, required: list = None) -> dict:
    return {"type": "object", "properties": properties or {}, "required": required or []}


_PROJECT_ID = _string("Project ID (required)")
_PERSONA_ID = _string("Persona ID (required)")


def _project_persona_schema() -> dict:
    return _schema(
        {"project_id": _PROJECT_ID, "persona_id": _PERSONA_ID},
        ["project_id", "persona_id"],
    )


def _project_schema() -> dict:
    return _schema({"project_id": _PROJECT_ID}, ["project_id"])


def _legacy_project_schema() -> dict:
    return _schema({"projectId": _PROJECT_ID}, ["projectId"])


TOOL_DEFINITIONS = [
    Tool(
        name=ToolName.AUTHENTICATE.value,
        description="Authenticate with Rezoomex using email and password",
        inputSchema=_schema(
            {
                "email": _string("Rezoomex email address"),
                "password": _string("Rezoomex password"),
            },
            ["email", "password"],
        ),
    ),
    Tool(
        name=ToolName.LIST_USER_STORIES.value,
        description="List all user stories with numbers for a project and persona",
        inputSchema=_project_persona_schema(),
    ),
    Tool(
        name=ToolName.GET_STORY_RANGE.value,
        description="Get user stories in a range (e.g., stories 1-5) with all details",
        inputSchema=_schema(
            {
                "start_number": _story_number("Start story number (1-based)"),
                "end_number": _story_number("End story number (1-based)"),
                "project_id": _PROJECT_ID,
                "persona_id": _PERSONA_ID,
            },
            ["start_number", "end_number", "project_id", "persona_id"],
        ),
    ),
    Tool(
        name=ToolName.GET_SINGLE_STORY_DETAILS.value,
        description="Get detailed information for a single user story by number or ID",
        inputSchema=_schema(
            {
                "story_number": _story_number("Story number (1-based)"),
                "story_id": _string("Story ID (e.g., 39SQ-P-003-001)"),
                "project_id": _PROJECT_ID,
                "persona_id": _PERSONA_ID,
            },
            ["project_id", "persona_id"],
        ),
    ),
    Tool(
        name=ToolName.GET_PROJECT_OVERVIEW.value,
        description="Get comprehensive project overview with elevator pitch, vision, and personas",
        inputSchema=_project_schema(),
    ),
    Tool(
        name=ToolName.GET_PERSONA_PROFILE.value,
        description="Get detailed persona profile with demographics, goals, and characteristics",
        inputSchema=_project_persona_schema(),
    ),
    Tool(
        name=ToolName.GET_USER_JOURNEY.value,
        description="Get detailed user journey events and touchpoints for a persona",
        inputSchema=_project_persona_schema(),
    ),
    Tool(
        name=ToolName.GET_JOBS_TO_BE_DONE.value,
        description="Get Jobs to be Done analysis for a persona with functional, emotional, and social jobs",
        inputSchema=_project_persona_schema(),
    ),
    Tool(
        name=ToolName.GET_USER_INFO.value,
        description="Get authenticated user profile information",
        inputSchema=_schema(),
    ),
    Tool(
        name=ToolName.GET_PROJECT_ENVIRONMENT.value,
        description="Get project environment information including personas",
        inputSchema=_project_schema(),
    ),
    Tool(
        name=ToolName.CHECK_NDA_STATUS.value,
        description="Check NDA status for the authenticated user",
        inputSchema=_schema(),
    ),
    Tool(
        name=ToolName.GET_PRODUCT_INFO.value,
        description="Get detailed product information for a project",
        inputSchema=_project_schema(),
    ),
    Tool(
        name=ToolName.LIST_PROJECTS.value,
        description="List all available projects with their names and IDs",
        inputSchema=_schema(),
    ),
    Tool(
        name=ToolName.FIND_PROJECT_BY_NAME.value,
        description="Find a project by its name and get the project ID",
        inputSchema=_schema(
            {"project_name": _string("Project name to search for")},
            ["project_name"],
        ),
    ),
    Tool(
        name=ToolName.FIND_PERSONA_BY_NAME.value,
        description="Find a persona by name within a project and get the persona ID",
        inputSchema=_schema(
            {
                "project_id": _string("Project ID or name"),
                "persona_name": _string("Persona name to search for"),
            },
            ["project_id", "persona_name"],
        ),
    ),
    Tool(
        name=ToolName.GET_USER_STORIES_BY_NAME.value,
        description="List user stories using project and persona names (more user-friendly)",
        inputSchema=_schema(
            {
                "project_name": _string("Project name or ID"),
                "persona_name": _string("Persona name or ID"),
            },
            ["project_name", "persona_name"],
        ),
    ),
    Tool(
        name=ToolName.GET_PERSONA_BY_NAME.value,
        description="Get persona profile using project and persona names (user-friendly)",
        inputSchema=_schema(
            {
                "project_name": _string("Project name or ID"),
                "persona_name": _string("Persona name or ID"),
            },
            ["project_name", "persona_name"],
        ),
    ),
    Tool(
        name=ToolName.GET_PROJECT_BY_NAME.value,
        description="Find and get project details by name",
        inputSchema=_schema(
            {"project_name": _string("Project name to search for (e.g., 'Talentally Yours')")},
            ["project_name"],
        ),
    ),
    Tool(
        name=ToolName.LEGACY_GET_USER_INFO.value,
        description="Legacy: Get authenticated user profile information",
        inputSchema=_schema(),
    ),
    Tool(
        name=ToolName.LEGACY_FETCH_PERSONA.value,
        description="Legacy: Get persona details by project and persona ID",
        inputSchema=_schema(
            {"projectId": _PROJECT_ID, "personaId": _PERSONA_ID},
            ["projectId", "personaId"],
        ),
    ),
    Tool(
        name=ToolName.LEGACY_FETCH_ELEVATOR_PITCH.value,
        description="Legacy: Get project elevator pitch",
        inputSchema=_legacy_project_schema(),
    ),
    Tool(
        name=ToolName.LEGACY_FETCH_VISION_STATEMENT.value,
        description="Legacy: Get project vision statement",
        inputSchema=_legacy_project_schema(),
    ),
    Tool(
        name=ToolName.LEGACY_FETCH_PRODUCT_INFO.value,
        description="Legacy: Get product information",
        inputSchema=_legacy_project_schema(),
    ),
    Tool(
        name=ToolName.LEGACY_FETCH_PROJECT_ENVIRONMENT.value,
        description="Legacy: Get project environment information",
        inputSchema=_legacy_project_schema(),
    ),
    Tool(
        name=ToolName.LEGACY_CHECK_NDA_STATUS.value,
        description="Legacy: Check NDA status for the authenticated user",
        inputSchema=_schema(),
    ),
]


class ToolCatalog:
    """Immutable name -> Tool mapping, loaded once at startup."""

    def __init__(self, tools=None):
        tools = TOOL_DEFINITIONS if tools is None else tools
        self._tools = MappingProxyType({tool.name: tool for tool in tools})

    def lookup(self, name) -> Optional[Tool]:
        return self._tools.get(name)

    def list(self) -> tuple:
        return tuple(self._tools.values())

    def listed_tools(self) -> tuple:
        """Tools offered to clients; authentication is handled out-of-band."""
        return tuple(tool for tool in self._tools.values() if tool.name != AUTHENTICATE_TOOL.value)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name) -> bool:
        return name in self._tools


# JSON-schema primitive type checks
_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
}

_TYPE_WORDS = {
    "string": "a string",
    "integer": "an integer",
    "number": "a number",
    "boolean": "a boolean",
    "object": "an object",
    "array": "an array",
}


def validate_arguments(tool: Tool, arguments) -> None:
    """Check tool arguments against the tool's input schema.

    Collects every violation and raises a single ValidationError.
    """
    if not isinstance(arguments, dict):
        raise ValidationError(["Arguments must be an object"])

    schema = tool.inputSchema or {}
    errors = []

    for field in schema.get("required") or []:
        if arguments.get(field) is None:
            errors.append(f"Missing required field: {field}")

    for field, field_schema in (schema.get("properties") or {}).items():
        if field not in arguments or arguments[field] is None:
            continue
        value = arguments[field]

        expected = field_schema.get("type")
        check = _TYPE_CHECKS.get(expected)
        if check and not check(value):
            errors.append(f"Field {field} must be {_TYPE_WORDS[expected]}")
            continue

        if not _TYPE_CHECKS["number"](value):
            continue
        minimum = field_schema.get("minimum")
        if minimum is not None and value < minimum:
            errors.append(f"Field {field} must be at least {minimum}")
        maximum = field_schema.get("maximum")
        if maximum is not None and value > maximum:
            errors.append(f"Field {field} must be at most {maximum}")

    if errors:
        logger.info(f"[TOOL] {tool.name} rejected: {len(errors)} validation error(s)")
        raise ValidationError(errors)
