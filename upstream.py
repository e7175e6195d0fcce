"""Upstream Rezoomex API client.

One RezoomexClient is built per bearer credential and owned by the session
registry. Every handle shares the pooled httpx.AsyncClient held by UpstreamApi.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from errors import UpstreamError, UpstreamUnavailable

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "Origin": "https://workspace.rezoomex.com",
    "Referer": "https://workspace.rezoomex.com/",
    "User-Agent": "Rezoomex-MCP-Client/1.0",
}

# No listing endpoint exists upstream, so accessible projects are checked from
# this set. The result may be incomplete.
KNOWN_PROJECTS = [
    {
        "id": "39SQ",
        "name": "Talentally Yours",
        "description": "CV upload and candidate onboarding system",
    },
]

_PROJECT_ID_PATTERN = re.compile(r"^[A-Z0-9]{2,6}$")


def is_header_safe(value: str) -> bool:
    """True if value can be sent as an HTTP header value as-is."""
    return bool(value) and value.isascii() and value.isprintable()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class UpstreamApi:
    """Factory for upstream handles sharing one connection pool."""

    def __init__(self, base_url: str, timeout: float = 30.0, http_client: httpx.AsyncClient = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    def handle_for(self, bearer_token: str) -> "RezoomexClient":
        return RezoomexClient(bearer_token, self._http, self.base_url, self.timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


class RezoomexClient:
    """Authenticated handle on the Rezoomex requirements API."""

    def __init__(self, bearer_token: str, http_client: httpx.AsyncClient, base_url: str, timeout: float = 30.0):
        self._token = bearer_token
        self._http = http_client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.authenticated = False
        self.user_info: Optional[dict] = None

        self._operations = {
            "get_user_info": self._op_user_info,
            "check_nda_status": self._op_nda_status,
            "list_user_stories": self._op_list_user_stories,
            "get_story_range": self._op_story_range,
            "get_single_story_details": self._op_single_story,
            "get_project_overview": self._op_project_overview,
            "get_persona_profile": self._op_persona_profile,
            "get_user_journey": self._op_user_journey,
            "get_jobs_to_be_done": self._op_jobs_to_be_done,
            "get_project_environment": self._op_project_environment,
            "get_product_info": self._op_product_info,
            "list_projects": self._op_list_projects,
            "find_project_by_name": self._op_find_project,
            "get_project_by_name": self._op_find_project,
            "find_persona_by_name": self._op_find_persona,
            "get_user_stories_by_name": self._op_stories_by_name,
            "get_persona_by_name": self._op_persona_by_name,
            # Legacy aliases (camelCase arguments)
            "mcp0_getUserInfo": self._op_user_info,
            "mcp0_fetchPersona": self._op_legacy_persona,
            "mcp0_fetchElevatorPitch": self._op_legacy_elevator_pitch,
            "mcp0_fetchVisionStatement": self._op_legacy_vision_statement,
            "mcp0_fetchProductInfo": self._op_legacy_product_info,
            "mcp0_fetchProjectEnvironment": self._op_legacy_environment,
            "mcp0_checkNdaStatus": self._op_nda_status,
        }

    @property
    def operations(self) -> frozenset:
        return frozenset(self._operations)

    # ============== Transport ==============

    async def _get(self, path: str, params: dict = None) -> Any:
        """GET a path and return the decoded JSON body."""
        if not is_header_safe(self._token):
            logger.warning(f"[UPSTREAM] Refusing GET {path}: bearer token is not a valid header value")
            raise UpstreamError("Invalid bearer token", status_code=401)
        try:
            response = await self._http.get(
                f"{self.base_url}{path}",
                params=params,
                headers={**DEFAULT_HEADERS, "Authorization": f"Bearer {self._token}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"[UPSTREAM] Timeout on GET {path}")
            raise UpstreamUnavailable(f"Upstream request timed out: {path}") from e
        except httpx.RequestError as e:
            logger.warning(f"[UPSTREAM] Network error on GET {path}: {e}")
            raise UpstreamUnavailable(f"Cannot connect to Rezoomex API: {e}") from e

        if response.status_code >= 400:
            logger.error(f"[UPSTREAM] GET {path} failed with status {response.status_code}")
            raise UpstreamError(
                f"Request failed with status code {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError:
            return response.text

    async def validate(self) -> bool:
        """Check the credential against the profile endpoint."""
        try:
            self.user_info = await self._get("/v1/users/me")
        except (UpstreamError, UpstreamUnavailable):
            self.authenticated = False
            return False
        self.authenticated = True
        return True

    async def invoke(self, operation: str, params: dict) -> dict:
        """Run a named operation with tool arguments."""
        handler = self._operations.get(operation)
        if handler is None:
            raise UpstreamError(f"Operation {operation} not implemented")
        return await handler(params or {})

    async def _optional(self, path: str, default=None):
        """Fetch auxiliary data; failures are demoted to the default."""
        try:
            return await self._get(path)
        except (UpstreamError, UpstreamUnavailable) as e:
            logger.warning(f"[UPSTREAM] Optional fetch {path} failed: {e.message}")
            return default

    # ============== Users ==============

    async def get_user_info(self) -> dict:
        try:
            data = await self._get("/v1/users/me")
        except UpstreamError as e:
            raise UpstreamError(f"Failed to fetch user info: {e.message}", e.status_code) from e
        return {"success": True, "data": data, "timestamp": _timestamp()}

    async def _op_user_info(self, params: dict) -> dict:
        return await self.get_user_info()

    async def _op_nda_status(self, params: dict) -> dict:
        info = await self.get_user_info()
        data = info["data"] if isinstance(info["data"], dict) else {}
        return {
            "success": True,
            "data": {"ndaStatus": data.get("ndaStatus") or "UNKNOWN"},
            "timestamp": _timestamp(),
        }

    # ============== User stories ==============

    async def get_user_stories(self, project_id: str, persona_id: str, page_size: int = 100, start_offset: int = 0) -> dict:
        try:
            body = await self._get(
                f"/v1/requirements/{project_id}/{persona_id}/user_story",
                params={"pageSize": page_size, "startOffset": start_offset},
            )
        except UpstreamError as e:
            raise UpstreamError(f"Failed to fetch user stories: {e.message}", e.status_code) from e

        items = _data_list(body)
        stories = [self._story_from_item(item, project_id, persona_id) for item in items]

        # Creation order gives stable 1-based story numbers
        stories.sort(key=lambda s: s["createdAt"] or "")
        for number, story in enumerate(stories, start=1):
            story["number"] = number

        return {
            "success": True,
            "projectId": project_id,
            "personaId": persona_id,
            "stories": stories,
            "total": len(stories),
            "summary": self._stories_summary(stories),
            "timestamp": _timestamp(),
        }

    @staticmethod
    def _story_from_item(item: dict, project_id: str, persona_id: str, number: int = 0) -> dict:
        properties = item.get("properties") or {}
        return {
            "number": number,
            "id": item.get("resourceId", ""),
            "title": properties.get("goal") or "Untitled Story",
            "description": properties.get("description", ""),
            "status": "Active",
            "projectId": project_id,
            "personaId": persona_id,
            "createdAt": item.get("createdAt"),
            "rawData": item,
        }

    @staticmethod
    def _stories_summary(stories: list) -> str:
        if not stories:
            return "No user stories found for this project and persona."
        lines = ["User Stories Summary:", "=" * 50]
        lines.extend(f"{story['number']}. {story['title']}" for story in stories)
        lines.append("=" * 50)
        lines.append(f"Total: {len(stories)} user stories")
        return "\n".join(lines)

    async def _story_details(self, project_id: str, story: dict) -> dict:
        """Attach acceptance criteria, test cases and test data to a story."""
        story_id = story["id"]
        criteria, cases, test_data = await asyncio.gather(
            self._optional(f"/v1/requirements/{project_id}/{story_id}/acceptance_criteria"),
            self._optional(f"/v1/requirements/{project_id}/{story_id}/test_case"),
            self._optional(f"/v1/requirements/{project_id}/{story_id}/test_data"),
        )
        return {
            **story,
            "acceptanceCriteria": _data_list(criteria),
            "testCases": _data_list(cases),
            "testData": _data_list(test_data),
        }

    async def _op_list_user_stories(self, params: dict) -> dict:
        return await self.get_user_stories(params["project_id"], params["persona_id"])

    async def _op_story_range(self, params: dict) -> dict:
        project_id = params["project_id"]
        start_number = params["start_number"]
        end_number = params["end_number"]
        result = await self.get_user_stories(project_id, params["persona_id"])
        stories = result["stories"]

        start_idx = max(0, start_number - 1)
        end_idx = min(len(stories), end_number)
        if start_idx >= len(stories):
            return {
                "success": True,
                "stories": [],
                "range": f"{start_number}-{end_number}",
                "message": "No stories found in the specified range",
                "timestamp": _timestamp(),
            }

        detailed = await asyncio.gather(
            *(self._story_details(project_id, story) for story in stories[start_idx:end_idx])
        )
        return {
            "success": True,
            "stories": list(detailed),
            "range": f"{start_number}-{end_number}",
            "count": len(detailed),
            "timestamp": _timestamp(),
        }

    async def _op_single_story(self, params: dict) -> dict:
        project_id = params["project_id"]
        persona_id = params["persona_id"]
        story_id = params.get("story_id")
        story_number = params.get("story_number")

        if story_id:
            try:
                item = await self._get(f"/v1/requirements/{project_id}/{persona_id}/user_story/{story_id}")
            except UpstreamError as e:
                raise UpstreamError(f"Failed to fetch story details: {e.message}", e.status_code) from e
            story = self._story_from_item(item if isinstance(item, dict) else {}, project_id, persona_id, 1)
        elif story_number:
            result = await self.get_user_stories(project_id, persona_id)
            story = next((s for s in result["stories"] if s["number"] == story_number), None)
            if story is None:
                raise UpstreamError(f"Failed to fetch story details: Story #{story_number} not found")
        else:
            raise UpstreamError("Failed to fetch story details: Either story_number or story_id must be provided")

        return {
            "success": True,
            "story": await self._story_details(project_id, story),
            "timestamp": _timestamp(),
        }

    # ============== Projects and personas ==============

    async def _op_project_overview(self, params: dict) -> dict:
        return await self.get_project_overview(params["project_id"])

    async def get_project_overview(self, project_id: str) -> dict:
        details, pitch, vision, personas = await asyncio.gather(
            self._optional(f"/v1/requirements/projects/{project_id}"),
            self._optional(f"/v1/requirements/{project_id}/{project_id}/elevator_pitch"),
            self._optional(f"/v1/requirements/{project_id}/{project_id}/vision_statement"),
            self._optional(f"/v1/requirements/{project_id}/{project_id}/persona"),
        )
        return {
            "success": True,
            "overview": {
                "projectId": project_id,
                "projectDetails": details,
                "elevatorPitch": pitch,
                "visionStatement": vision,
                "personas": personas,
            },
            "timestamp": _timestamp(),
        }

    async def get_persona_profile(self, project_id: str, persona_id: str) -> dict:
        try:
            persona = await self._get(f"/v1/requirements/{project_id}/{project_id}/persona/{persona_id}")
        except UpstreamError as e:
            raise UpstreamError(f"Failed to fetch persona profile: {e.message}", e.status_code) from e
        return {"success": True, "persona": persona, "timestamp": _timestamp()}

    async def _op_persona_profile(self, params: dict) -> dict:
        return await self.get_persona_profile(params["project_id"], params["persona_id"])

    async def _paged(self, path: str, label: str, key: str, page_size: int = 50) -> dict:
        try:
            data = await self._get(path, params={"pageSize": page_size, "startOffset": 0})
        except UpstreamError as e:
            raise UpstreamError(f"Failed to fetch {label}: {e.message}", e.status_code) from e
        return {"success": True, key: data, "timestamp": _timestamp()}

    async def _op_user_journey(self, params: dict) -> dict:
        return await self._paged(
            f"/v1/requirements/{params['project_id']}/{params['persona_id']}/event",
            "user journey", "journey",
        )

    async def _op_jobs_to_be_done(self, params: dict) -> dict:
        return await self._paged(
            f"/v1/requirements/{params['project_id']}/{params['persona_id']}/jtbd",
            "jobs to be done", "jobsToBeDone",
        )

    async def get_project_environment(self, project_id: str) -> dict:
        try:
            data = await self._get(f"/v1/requirements/{project_id}/{project_id}/persona")
        except UpstreamError as e:
            raise UpstreamError(f"Failed to get project environment: {e.message}", e.status_code) from e
        if not data:
            return {"environment": "No environment data available", "personas": []}

        personas = (data.get("personas") or []) if isinstance(data, dict) else []
        persona_list = ", ".join(f"{p.get('name') or p.get('id')} ({p.get('id')})" for p in personas)
        return {
            "environment": data,
            "personas": personas,
            "summary": f"Project environment with {len(personas)} personas: {persona_list or 'None'}",
        }

    async def _op_project_environment(self, params: dict) -> dict:
        return await self.get_project_environment(params["project_id"])

    async def get_product_info(self, project_id: str) -> dict:
        try:
            data = await self._get(f"/v1/requirements/projects/{project_id}")
        except UpstreamError as e:
            raise UpstreamError(f"Failed to fetch product info: {e.message}", e.status_code) from e
        return {"success": True, "productInfo": data, "timestamp": _timestamp()}

    async def _op_product_info(self, params: dict) -> dict:
        return await self.get_product_info(params["project_id"])

    async def list_accessible_projects(self) -> dict:
        accessible = []
        for project in KNOWN_PROJECTS:
            try:
                await self._get(f"/v1/requirements/{project['id']}/{project['id']}/persona")
            except (UpstreamError, UpstreamUnavailable) as e:
                logger.info(f"[UPSTREAM] Project {project['id']} not accessible: {e.message}")
                continue
            accessible.append(dict(project))
        return {
            "success": True,
            "projects": accessible,
            "total": len(accessible),
            "timestamp": _timestamp(),
        }

    async def _op_list_projects(self, params: dict) -> dict:
        return await self.list_accessible_projects()

    async def find_project_by_name(self, project_name: str) -> dict:
        projects = (await self.list_accessible_projects())["projects"]
        wanted = project_name.lower()
        for project in projects:
            if project["name"].lower() == wanted or project["id"].lower() == wanted:
                return project
        available = ", ".join(p["name"] for p in projects)
        raise UpstreamError(f"Project not found: {project_name}. Available projects: {available}")

    async def _op_find_project(self, params: dict) -> dict:
        return await self.find_project_by_name(params["project_name"])

    async def find_persona_by_name(self, project_id: str, persona_name: str) -> dict:
        environment = await self.get_project_environment(project_id)
        wanted = persona_name.lower()
        for persona in environment["personas"]:
            if (persona.get("name") or "").lower() == wanted or (persona.get("id") or "").lower() == wanted:
                return persona
        raise UpstreamError(f"Persona not found with name: {persona_name}")

    async def resolve_project_id(self, identifier: str) -> str:
        if _PROJECT_ID_PATTERN.match(identifier):
            return identifier
        return (await self.find_project_by_name(identifier))["id"]

    async def resolve_persona_id(self, project_id: str, identifier: str) -> str:
        if "-P-" in identifier:
            return identifier
        return (await self.find_persona_by_name(project_id, identifier))["id"]

    async def _op_find_persona(self, params: dict) -> dict:
        project_id = await self.resolve_project_id(params["project_id"])
        return await self.find_persona_by_name(project_id, params["persona_name"])

    async def _op_stories_by_name(self, params: dict) -> dict:
        project_id = await self.resolve_project_id(params["project_name"])
        persona_id = await self.resolve_persona_id(project_id, params["persona_name"])
        return await self.get_user_stories(project_id, persona_id)

    async def _op_persona_by_name(self, params: dict) -> dict:
        project_id = await self.resolve_project_id(params["project_name"])
        persona_id = await self.resolve_persona_id(project_id, params["persona_name"])
        return await self.get_persona_profile(project_id, persona_id)

    # ============== Legacy ==============

    async def _op_legacy_persona(self, params: dict) -> dict:
        return await self.get_persona_profile(params["projectId"], params["personaId"])

    async def _op_legacy_elevator_pitch(self, params: dict) -> dict:
        overview = (await self.get_project_overview(params["projectId"]))["overview"]
        return {"result": overview["elevatorPitch"] or "No elevator pitch available"}

    async def _op_legacy_vision_statement(self, params: dict) -> dict:
        overview = (await self.get_project_overview(params["projectId"]))["overview"]
        return {"result": overview["visionStatement"] or "No vision statement available"}

    async def _op_legacy_product_info(self, params: dict) -> dict:
        return await self.get_product_info(params["projectId"])

    async def _op_legacy_environment(self, params: dict) -> dict:
        return await self.get_project_environment(params["projectId"])


def _data_list(body) -> list:
    if isinstance(body, dict):
        return body.get("data") or []
    return []
