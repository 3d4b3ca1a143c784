"""Tests for the tool provider domains."""

import json

import httpx
import pytest

from shared.models import Handled, HandledError, NotMine


class FakeAPI:
    """Routes requests to canned responses and records what was sent."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, text=f"no route for {key}")
        status_code, body = self.routes[key]
        return httpx.Response(status_code, json=body)

    @property
    def transport(self):
        return httpx.MockTransport(self)


def devops_adapter(routes):
    from domains.devops import DevOpsAdapter
    from domains.devops.client import AzureDevOpsClient

    api = FakeAPI(routes)
    client = AzureDevOpsClient(
        organization="contoso",
        project="web",
        pat="secret-pat",
        transport=api.transport,
    )
    return DevOpsAdapter(client), api


def trello_adapter(routes):
    from domains.trello import TrelloAdapter
    from domains.trello.client import TrelloClient

    api = FakeAPI(routes)
    client = TrelloClient(api_key="key123", token="tok456", transport=api.transport)
    return TrelloAdapter(client), api


class TestDevOpsDomain:
    """Tests for the Azure DevOps adapter."""

    def test_tool_definitions(self):
        adapter, _ = devops_adapter({})

        assert adapter.tool_names() == [
            "devops_list_my_workitems",
            "devops_get_workitem",
            "devops_create_workitem",
            "devops_update_workitem",
            "devops_query_workitems",
            "devops_list_pipelines",
            "devops_run_pipeline",
            "devops_list_repos",
            "devops_list_boards",
        ]

        schema = adapter.get_descriptor("devops_create_workitem").parameter_schema
        assert schema["type"] == "object"
        assert set(schema["required"]) == {"type", "title"}
        assert schema["properties"]["type"]["enum"] == ["Task", "Bug", "User Story", "Feature", "Epic"]
        assert "title" not in schema["properties"]["title"]

    def test_optional_fields_accept_null(self):
        """Test that optional fields stay nullable in the generated schema."""
        from skills.registry import ToolRegistry

        adapter, _ = devops_adapter({})
        registry = ToolRegistry()
        create = adapter.get_descriptor("devops_create_workitem")
        update = adapter.get_descriptor("devops_update_workitem")

        assert create.parameter_schema["properties"]["priority"]["type"] == ["integer", "null"]
        assert registry.validate_arguments(create, {"type": "Task", "title": "t", "priority": None}).allowed
        assert registry.validate_arguments(update, {"id": 3, "state": None}).allowed
        assert not registry.validate_arguments(update, {"id": 3, "state": "Done"}).allowed
        assert not registry.validate_arguments(create, {"type": None, "title": "t"}).allowed

    @pytest.mark.asyncio
    async def test_create_workitem_with_null_priority(self):
        adapter, api = devops_adapter({
            ("POST", "/contoso/web/_apis/wit/workitems/$Task"): (200, {
                "id": 7,
                "fields": {"System.Title": "t"},
            }),
        })

        outcome = await adapter.execute("devops_create_workitem", {
            "type": "Task", "title": "t", "priority": None,
        })

        assert outcome.output == "Created work item #7: t"
        ops = json.loads(api.requests[0].content)
        assert all(op["path"] != "/fields/Microsoft.VSTS.Common.Priority" for op in ops)

    @pytest.mark.asyncio
    async def test_foreign_tool_is_not_mine(self):
        adapter, api = devops_adapter({})

        outcome = await adapter.execute("trello_list_boards", {})

        assert isinstance(outcome, NotMine)
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_get_workitem(self):
        adapter, api = devops_adapter({
            ("GET", "/contoso/web/_apis/wit/workitems/42"): (200, {
                "id": 42,
                "fields": {
                    "System.WorkItemType": "Task",
                    "System.Title": "Write docs",
                    "System.State": "New",
                    "System.AssignedTo": {"displayName": "Ana"},
                    "System.Tags": "docs; release",
                },
            }),
        })

        outcome = await adapter.execute("devops_get_workitem", {"id": 42})

        assert isinstance(outcome, Handled)
        assert outcome.output == (
            "Work Item #42\nType: Task\nTitle: Write docs\nState: New\n"
            "Assigned To: Ana\nTags: docs; release\n"
        )
        request = api.requests[0]
        assert request.url.params["$expand"] == "all"
        assert request.headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_create_workitem_sends_json_patch(self):
        adapter, api = devops_adapter({
            ("POST", "/contoso/web/_apis/wit/workitems/$User Story"): (200, {
                "id": 101,
                "fields": {"System.Title": "Checkout flow"},
            }),
        })

        outcome = await adapter.execute("devops_create_workitem", {
            "type": "User Story",
            "title": "Checkout flow",
            "priority": 2,
            "tags": ["web", "q3"],
            "parent_id": 9,
        })

        assert isinstance(outcome, Handled)
        assert outcome.output == "Created work item #101: Checkout flow"

        request = api.requests[0]
        assert request.headers["Content-Type"] == "application/json-patch+json"
        ops = json.loads(request.content)
        assert {"op": "add", "path": "/fields/System.Title", "value": "Checkout flow"} in ops
        assert {"op": "add", "path": "/fields/System.Tags", "value": "web; q3"} in ops
        assert ops[-1]["value"]["url"].endswith("/_apis/wit/workitems/9")

    @pytest.mark.asyncio
    async def test_invalid_arguments(self):
        adapter, api = devops_adapter({})

        outcome = await adapter.execute("devops_update_workitem", {"id": 1, "state": "Done"})

        assert isinstance(outcome, HandledError)
        assert outcome.message.startswith("invalid arguments: state:")
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_http_error_is_handled_error(self):
        adapter, _ = devops_adapter({
            ("GET", "/contoso/web/_apis/pipelines"): (401, {"message": "unauthorized"}),
        })

        outcome = await adapter.execute("devops_list_pipelines", {})

        assert isinstance(outcome, HandledError)
        assert outcome.message.startswith("API error (status 401): ")

    @pytest.mark.asyncio
    async def test_run_pipeline(self):
        adapter, api = devops_adapter({
            ("POST", "/contoso/web/_apis/pipelines/5/runs"): (200, {
                "id": 88, "name": "20240101.1", "state": "inProgress",
            }),
        })

        outcome = await adapter.execute("devops_run_pipeline", {
            "pipeline_id": 5,
            "variables": {"env": "staging"},
        })

        assert outcome.output == "Started pipeline run #88: 20240101.1 (state: inProgress)"
        body = json.loads(api.requests[0].content)
        assert body["resources"]["repositories"]["self"]["refName"] == "refs/heads/main"
        assert body["variables"] == {"env": {"value": "staging"}}

    @pytest.mark.asyncio
    async def test_empty_query_result(self):
        adapter, api = devops_adapter({
            ("POST", "/contoso/web/_apis/wit/wiql"): (200, {"workItems": []}),
        })

        outcome = await adapter.execute("devops_query_workitems", {
            "query": "SELECT [System.Id] FROM WorkItems",
        })

        assert outcome.output == "No work items found."
        assert len(api.requests) == 1

    @pytest.mark.asyncio
    async def test_list_boards_uses_default_team(self):
        adapter, api = devops_adapter({
            ("GET", "/contoso/web/web Team/_apis/work/boards"): (200, {
                "value": [{"name": "Stories"}, {"name": "Epics"}],
            }),
        })

        outcome = await adapter.execute("devops_list_boards", {})

        assert outcome.output == "Found 2 boards:\n\n- Stories\n- Epics\n"

    def test_prompt_context(self):
        adapter, _ = devops_adapter({})

        assert adapter.prompt_context() == "Azure DevOps organization: contoso, project: web"


class TestTrelloDomain:
    """Tests for the Trello adapter."""

    def test_tool_definitions(self):
        adapter, _ = trello_adapter({})

        assert len(adapter.tool_names()) == 11
        assert all(name.startswith("trello_") for name in adapter.tool_names())

    @pytest.mark.asyncio
    async def test_list_boards(self):
        adapter, api = trello_adapter({
            ("GET", "/1/members/me/boards"): (200, [
                {"id": "b1", "name": "Roadmap", "closed": False, "shortUrl": "https://trello.com/b/x"},
                {"id": "b2", "name": "Old", "closed": True},
            ]),
        })

        outcome = await adapter.execute("trello_list_boards", {})

        assert outcome.output == (
            "Found 2 boards:\n\n"
            "- [Open] Roadmap (ID: b1, URL: https://trello.com/b/x)\n"
            "- [Closed] Old (ID: b2, URL: )\n"
        )
        params = api.requests[0].url.params
        assert params["key"] == "key123"
        assert params["token"] == "tok456"

    @pytest.mark.asyncio
    async def test_create_card(self):
        adapter, api = trello_adapter({
            ("POST", "/1/cards"): (200, {"id": "c9", "name": "Ship it", "shortUrl": "https://trello.com/c/y"}),
        })

        outcome = await adapter.execute("trello_create_card", {
            "list_id": "l1",
            "name": "Ship it",
            "position": "top",
        })

        assert outcome.output == "Created card 'Ship it' (ID: c9, URL: https://trello.com/c/y)"
        params = api.requests[0].url.params
        assert params["idList"] == "l1"
        assert params["pos"] == "top"
        assert "desc" not in params

    @pytest.mark.asyncio
    async def test_archive_card(self):
        adapter, api = trello_adapter({
            ("PUT", "/1/cards/c9"): (200, {"id": "c9", "name": "Ship it", "closed": True}),
        })

        outcome = await adapter.execute("trello_update_card", {"card_id": "c9", "closed": True})

        assert outcome.output == "Updated card 'Ship it' (ID: c9)"
        assert api.requests[0].url.params["closed"] == "true"

    @pytest.mark.asyncio
    async def test_get_card_with_labels(self):
        adapter, _ = trello_adapter({
            ("GET", "/1/cards/c9"): (200, {
                "id": "c9",
                "name": "Ship it",
                "closed": False,
                "due": "2024-12-31T23:59:59Z",
                "labels": [{"name": "urgent", "color": "red"}],
            }),
        })

        outcome = await adapter.execute("trello_get_card", {"card_id": "c9"})

        assert "Status: Open" in outcome.output
        assert "Due: 2024-12-31T23:59:59Z" in outcome.output
        assert "Labels: urgent (red)" in outcome.output

    @pytest.mark.asyncio
    async def test_unknown_argument_rejected(self):
        adapter, api = trello_adapter({})

        outcome = await adapter.execute("trello_get_board", {"board_id": "b1", "extra": 1})

        assert isinstance(outcome, HandledError)
        assert "extra" in outcome.message
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_not_found(self):
        adapter, _ = trello_adapter({})

        outcome = await adapter.execute("trello_get_board_members", {"board_id": "missing"})

        assert isinstance(outcome, HandledError)
        assert outcome.message.startswith("API error (status 404)")


class TestDomainLoading:
    """Tests for building adapters from configuration."""

    def test_only_enabled_domains_load(self):
        from domains import load_enabled_domains, register_domains
        from shared.config import (
            AzureDevOpsSettings,
            SecuritySettings,
            Settings,
            TrelloSettings,
        )
        from skills.registry import ToolRegistry

        settings = Settings(
            security=SecuritySettings(auth_mode="none"),
            azure_devops=AzureDevOpsSettings(enabled=False),
            trello=TrelloSettings(enabled=True, api_key="k", token="t"),
        )
        adapters = load_enabled_domains(settings)
        registry = ToolRegistry()
        register_domains(registry, adapters)

        assert [a.name for a in adapters] == ["trello"]
        assert "trello_list_boards" in registry
        assert "devops_list_my_workitems" not in registry

    def test_enabled_domain_requires_credentials(self):
        from pydantic import ValidationError

        from shared.config import AzureDevOpsSettings, SecuritySettings, Settings

        with pytest.raises(ValidationError, match="AZURE_DEVOPS_PAT"):
            Settings(
                security=SecuritySettings(auth_mode="none"),
                azure_devops=AzureDevOpsSettings(enabled=True, organization="o", project="p"),
            )

    def test_tool_names_unique_across_domains(self):
        devops, _ = devops_adapter({})
        trello, _ = trello_adapter({})

        names = devops.tool_names() + trello.tool_names()
        assert len(names) == len(set(names))
