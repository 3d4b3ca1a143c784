"""Azure DevOps REST client.

Authenticates with a personal access token over basic auth and speaks the
``https://dev.azure.com/{organization}/{project}`` REST surface.
"""

from typing import Any, Optional
from urllib.parse import quote

import httpx

from domains.base import RESTClient

WORKITEM_FIELDS = [
    "System.Id",
    "System.Title",
    "System.State",
    "System.AssignedTo",
    "System.WorkItemType",
    "System.Description",
    "System.CreatedDate",
    "System.ChangedDate",
    "Microsoft.VSTS.Common.Priority",
    "System.Tags",
]

MY_WORKITEMS_QUERY = (
    "SELECT [System.Id], [System.Title], [System.State], [System.AssignedTo], "
    "[System.WorkItemType] FROM WorkItems "
    "WHERE [System.AssignedTo] = @Me "
    "AND [System.State] <> 'Closed' "
    "AND [System.State] <> 'Done' "
    "ORDER BY [System.ChangedDate] DESC"
)

JSON_PATCH = "application/json-patch+json"


def join_tags(tags: list[str]) -> str:
    return "; ".join(tags)


def _field_op(field: str, value: Any) -> dict[str, Any]:
    return {"op": "add", "path": f"/fields/{field}", "value": value}


class AzureDevOpsClient:
    """Work items, pipelines, repositories and boards of one project."""

    def __init__(
        self,
        organization: str,
        project: str,
        pat: str,
        api_version: str = "7.0",
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.organization = organization
        self.project = project
        self.api_version = api_version
        self.base_url = f"https://dev.azure.com/{organization}/{project}"
        self._rest = RESTClient(
            self.base_url,
            timeout=timeout,
            auth=("", pat),
            params={"api-version": api_version},
            transport=transport,
        )

    async def close(self) -> None:
        await self._rest.close()

    # Work items

    async def get_workitem(self, workitem_id: int) -> dict[str, Any]:
        return await self._rest.get(
            f"/_apis/wit/workitems/{workitem_id}", params={"$expand": "all"}
        )

    async def query_workitems(self, query: str) -> list[dict[str, Any]]:
        """Run a WIQL query and fetch the full matching items."""
        result = await self._rest.post("/_apis/wit/wiql", json={"query": query})
        refs = result.get("workItems") or []
        if not refs:
            return []
        return await self.get_workitems_batch([ref["id"] for ref in refs])

    async def get_workitems_batch(self, ids: list[int]) -> list[dict[str, Any]]:
        result = await self._rest.post(
            "/_apis/wit/workitemsbatch",
            json={"ids": ids, "fields": WORKITEM_FIELDS},
        )
        return result.get("value") or []

    async def get_my_workitems(self) -> list[dict[str, Any]]:
        return await self.query_workitems(MY_WORKITEMS_QUERY)

    async def create_workitem(
        self,
        workitem_type: str,
        title: str,
        description: Optional[str] = None,
        assigned_to: Optional[str] = None,
        state: Optional[str] = None,
        priority: Optional[int] = None,
        tags: Optional[list[str]] = None,
        parent_id: Optional[int] = None,
    ) -> dict[str, Any]:
        ops = [_field_op("System.Title", title)]
        if description:
            ops.append(_field_op("System.Description", description))
        if assigned_to:
            ops.append(_field_op("System.AssignedTo", assigned_to))
        if state:
            ops.append(_field_op("System.State", state))
        if priority:
            ops.append(_field_op("Microsoft.VSTS.Common.Priority", priority))
        if tags:
            ops.append(_field_op("System.Tags", join_tags(tags)))
        if parent_id:
            ops.append({
                "op": "add",
                "path": "/relations/-",
                "value": {
                    "rel": "System.LinkTypes.Hierarchy-Reverse",
                    "url": f"{self.base_url}/_apis/wit/workitems/{parent_id}",
                },
            })

        return await self._rest.post(
            f"/_apis/wit/workitems/${quote(workitem_type)}",
            json=ops,
            content_type=JSON_PATCH,
        )

    async def update_workitem(
        self,
        workitem_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        state: Optional[str] = None,
        assigned_to: Optional[str] = None,
        priority: Optional[int] = None,
        tags: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        ops = []
        if title is not None:
            ops.append(_field_op("System.Title", title))
        if description is not None:
            ops.append(_field_op("System.Description", description))
        if state is not None:
            ops.append(_field_op("System.State", state))
        if assigned_to is not None:
            ops.append(_field_op("System.AssignedTo", assigned_to))
        if priority is not None:
            ops.append(_field_op("Microsoft.VSTS.Common.Priority", priority))
        if tags:
            ops.append(_field_op("System.Tags", join_tags(tags)))

        return await self._rest.patch(
            f"/_apis/wit/workitems/{workitem_id}",
            json=ops,
            content_type=JSON_PATCH,
        )

    # Pipelines

    async def list_pipelines(self) -> list[dict[str, Any]]:
        result = await self._rest.get("/_apis/pipelines")
        return result.get("value") or []

    async def run_pipeline(
        self,
        pipeline_id: int,
        branch: str = "refs/heads/main",
        variables: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "resources": {"repositories": {"self": {"refName": branch}}},
        }
        if variables:
            body["variables"] = {k: {"value": v} for k, v in variables.items()}
        return await self._rest.post(f"/_apis/pipelines/{pipeline_id}/runs", json=body)

    # Repositories

    async def list_repositories(self) -> list[dict[str, Any]]:
        result = await self._rest.get("/_apis/git/repositories")
        return result.get("value") or []

    # Boards

    def default_team(self) -> str:
        return f"{self.project} Team"

    async def list_boards(self, team: Optional[str] = None) -> list[dict[str, Any]]:
        team = team or self.default_team()
        # team-scoped routes sit beside the project path
        url = (
            f"https://dev.azure.com/{self.organization}/{self.project}/"
            f"{quote(team)}/_apis/work/boards"
        )
        result = await self._rest.get(url)
        return result.get("value") or []
