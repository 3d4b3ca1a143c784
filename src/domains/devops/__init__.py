"""Azure DevOps domain - work items, pipelines, repositories and boards."""

from typing import Any, Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from shared.config import AzureDevOpsSettings
from shared.logging import get_logger
from domains.base import BaseAdapter
from domains.devops.client import AzureDevOpsClient

logger = get_logger(__name__)

WorkItemType = Literal["Task", "Bug", "User Story", "Feature", "Epic"]
WorkItemState = Literal["New", "Active", "Resolved", "Closed"]


class _Args(BaseModel):
    model_config = ConfigDict(extra="forbid")


class NoArgs(_Args):
    pass


class WorkItemIdArgs(_Args):
    id: int = Field(..., description="The work item ID")


class CreateWorkItemArgs(_Args):
    type: WorkItemType = Field(..., description="Work item type: Task, Bug, User Story, Feature, Epic")
    title: str = Field(..., min_length=1, description="Title of the work item")
    description: Optional[str] = Field(default=None, description="Description of the work item (HTML supported)")
    assigned_to: Optional[str] = Field(default=None, description="Email or display name of the assignee")
    priority: Optional[int] = Field(default=None, ge=1, le=4, description="Priority (1=highest, 4=lowest)")
    tags: Optional[list[str]] = Field(default=None, description="Tags to add to the work item")
    parent_id: Optional[int] = Field(default=None, description="Parent work item ID (for hierarchy)")


class UpdateWorkItemArgs(_Args):
    id: int = Field(..., description="The work item ID to update")
    title: Optional[str] = Field(default=None, description="New title")
    state: Optional[WorkItemState] = Field(default=None, description="New state: New, Active, Resolved, Closed")
    assigned_to: Optional[str] = Field(default=None, description="New assignee email or display name")
    priority: Optional[int] = Field(default=None, ge=1, le=4, description="New priority (1-4)")


class QueryWorkItemsArgs(_Args):
    query: str = Field(
        ...,
        min_length=1,
        description=(
            "WIQL query string. Example: SELECT [System.Id], [System.Title] "
            "FROM WorkItems WHERE [System.State] = 'Active'"
        ),
    )


class RunPipelineArgs(_Args):
    pipeline_id: int = Field(..., description="The pipeline ID to run")
    branch: str = Field(
        default="refs/heads/main",
        description="Git branch to run the pipeline on (e.g., refs/heads/main)",
    )
    variables: Optional[dict[str, str]] = Field(default=None, description="Pipeline variables as key-value pairs")


class ListBoardsArgs(_Args):
    team: Optional[str] = Field(default=None, description="Team name (optional, defaults to project default team)")


def format_workitems(items: list[dict[str, Any]]) -> str:
    if not items:
        return "No work items found."

    lines = [f"Found {len(items)} work items:", ""]
    for item in items:
        fields = item.get("fields", {})
        lines.append(
            f"- #{item.get('id')} [{fields.get('System.WorkItemType')}] "
            f"{fields.get('System.Title')} (State: {fields.get('System.State')})"
        )
    return "\n".join(lines) + "\n"


def format_workitem(item: dict[str, Any]) -> str:
    fields = item.get("fields", {})
    lines = [
        f"Work Item #{item.get('id')}",
        f"Type: {fields.get('System.WorkItemType')}",
        f"Title: {fields.get('System.Title')}",
        f"State: {fields.get('System.State')}",
    ]

    assigned = fields.get("System.AssignedTo")
    if isinstance(assigned, dict):
        lines.append(f"Assigned To: {assigned.get('displayName')}")
    if fields.get("System.Description"):
        lines.append(f"Description: {fields['System.Description']}")
    if fields.get("System.Tags"):
        lines.append(f"Tags: {fields['System.Tags']}")

    return "\n".join(lines) + "\n"


def format_pipelines(pipelines: list[dict[str, Any]]) -> str:
    if not pipelines:
        return "No pipelines found."

    lines = [f"Found {len(pipelines)} pipelines:", ""]
    lines += [f"- [{p.get('id')}] {p.get('name')} (folder: {p.get('folder', '')})" for p in pipelines]
    return "\n".join(lines) + "\n"


def format_repos(repos: list[dict[str, Any]]) -> str:
    if not repos:
        return "No repositories found."

    lines = [f"Found {len(repos)} repositories:", ""]
    lines += [f"- {r.get('name')} (default branch: {r.get('defaultBranch', '')})" for r in repos]
    return "\n".join(lines) + "\n"


def format_boards(boards: list[dict[str, Any]]) -> str:
    if not boards:
        return "No boards found."

    lines = [f"Found {len(boards)} boards:", ""]
    lines += [f"- {b.get('name')}" for b in boards]
    return "\n".join(lines) + "\n"


class DevOpsAdapter(BaseAdapter):
    """
    Azure DevOps adapter.

    Provides tools for:
    - Work items (list, get, create, update, WIQL query)
    - Pipelines (list, run)
    - Repositories and boards
    """

    name = "azure_devops"
    capability = "Azure DevOps (work items, pipelines, repositories, boards)"

    def __init__(self, client: AzureDevOpsClient) -> None:
        self.client = client
        super().__init__()

    def _define_tools(self) -> None:
        self._register_tool(
            "devops_list_my_workitems",
            "List Azure DevOps work items assigned to me (current user). "
            "Returns tasks, bugs, and stories that are not closed.",
            NoArgs,
            self._list_my_workitems,
        )
        self._register_tool(
            "devops_get_workitem",
            "Get details of a specific Azure DevOps work item by ID",
            WorkItemIdArgs,
            self._get_workitem,
        )
        self._register_tool(
            "devops_create_workitem",
            "Create a new Azure DevOps work item (Task, Bug, User Story, etc.)",
            CreateWorkItemArgs,
            self._create_workitem,
        )
        self._register_tool(
            "devops_update_workitem",
            "Update an existing Azure DevOps work item",
            UpdateWorkItemArgs,
            self._update_workitem,
        )
        self._register_tool(
            "devops_query_workitems",
            "Query Azure DevOps work items using WIQL (Work Item Query Language)",
            QueryWorkItemsArgs,
            self._query_workitems,
        )
        self._register_tool(
            "devops_list_pipelines",
            "List all Azure DevOps pipelines in the project",
            NoArgs,
            self._list_pipelines,
        )
        self._register_tool(
            "devops_run_pipeline",
            "Trigger an Azure DevOps pipeline run",
            RunPipelineArgs,
            self._run_pipeline,
        )
        self._register_tool(
            "devops_list_repos",
            "List all Git repositories in the Azure DevOps project",
            NoArgs,
            self._list_repos,
        )
        self._register_tool(
            "devops_list_boards",
            "List all boards (Kanban) in the Azure DevOps project",
            ListBoardsArgs,
            self._list_boards,
        )

    def prompt_context(self) -> str:
        return f"Azure DevOps organization: {self.client.organization}, project: {self.client.project}"

    async def close(self) -> None:
        await self.client.close()

    async def _list_my_workitems(self, args: NoArgs) -> str:
        return format_workitems(await self.client.get_my_workitems())

    async def _get_workitem(self, args: WorkItemIdArgs) -> str:
        return format_workitem(await self.client.get_workitem(args.id))

    async def _create_workitem(self, args: CreateWorkItemArgs) -> str:
        item = await self.client.create_workitem(
            workitem_type=args.type,
            title=args.title,
            description=args.description,
            assigned_to=args.assigned_to,
            priority=args.priority,
            tags=args.tags,
            parent_id=args.parent_id,
        )
        logger.info("Work item created", id=item.get("id"), type=args.type)
        return f"Created work item #{item.get('id')}: {item.get('fields', {}).get('System.Title')}"

    async def _update_workitem(self, args: UpdateWorkItemArgs) -> str:
        item = await self.client.update_workitem(
            args.id,
            title=args.title,
            state=args.state,
            assigned_to=args.assigned_to,
            priority=args.priority,
        )
        return f"Updated work item #{item.get('id')}: {item.get('fields', {}).get('System.Title')}"

    async def _query_workitems(self, args: QueryWorkItemsArgs) -> str:
        return format_workitems(await self.client.query_workitems(args.query))

    async def _list_pipelines(self, args: NoArgs) -> str:
        return format_pipelines(await self.client.list_pipelines())

    async def _run_pipeline(self, args: RunPipelineArgs) -> str:
        run = await self.client.run_pipeline(args.pipeline_id, args.branch, args.variables)
        logger.info("Pipeline run started", pipeline_id=args.pipeline_id, run_id=run.get("id"))
        return f"Started pipeline run #{run.get('id')}: {run.get('name')} (state: {run.get('state')})"

    async def _list_repos(self, args: NoArgs) -> str:
        return format_repos(await self.client.list_repositories())

    async def _list_boards(self, args: ListBoardsArgs) -> str:
        return format_boards(await self.client.list_boards(args.team))


def create_devops_adapter(
    settings: AzureDevOpsSettings,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> DevOpsAdapter:
    """Build the adapter from configuration."""
    client = AzureDevOpsClient(
        organization=settings.organization,
        project=settings.project,
        pat=settings.pat or "",
        api_version=settings.api_version,
        timeout=settings.timeout_seconds,
        transport=transport,
    )
    adapter = DevOpsAdapter(client)
    logger.info("Azure DevOps domain loaded", tool_count=len(adapter.tool_names()))
    return adapter


__all__ = ["DevOpsAdapter", "AzureDevOpsClient", "create_devops_adapter"]
