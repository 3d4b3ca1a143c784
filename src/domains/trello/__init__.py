"""Trello domain - Kanban boards, lists and cards."""

from typing import Any, Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from shared.config import TrelloSettings
from shared.logging import get_logger
from domains.base import BaseAdapter
from domains.trello.client import TrelloClient

logger = get_logger(__name__)


class _Args(BaseModel):
    model_config = ConfigDict(extra="forbid")


class NoArgs(_Args):
    pass


class BoardArgs(_Args):
    board_id: str = Field(..., description="The board ID")


class ListArgs(_Args):
    list_id: str = Field(..., description="The list ID")


class CardArgs(_Args):
    card_id: str = Field(..., description="The card ID")


class CreateListArgs(_Args):
    board_id: str = Field(..., description="The board ID where the list will be created")
    name: str = Field(..., min_length=1, description="Name of the list")


class CreateCardArgs(_Args):
    list_id: str = Field(..., description="The list ID where the card will be created")
    name: str = Field(..., min_length=1, description="Title of the card")
    description: Optional[str] = Field(default=None, description="Description of the card (Markdown supported)")
    position: Optional[Literal["top", "bottom"]] = Field(default=None, description="Position of the card: 'top' or 'bottom'")
    due_date: Optional[str] = Field(default=None, description="Due date in ISO 8601 format (e.g., 2024-12-31T23:59:59Z)")


class UpdateCardArgs(_Args):
    card_id: str = Field(..., description="The card ID to update")
    name: Optional[str] = Field(default=None, description="New title for the card")
    description: Optional[str] = Field(default=None, description="New description for the card")
    closed: Optional[bool] = Field(default=None, description="Whether the card is closed (archived)")
    list_id: Optional[str] = Field(default=None, description="Move card to a different list")
    due: Optional[str] = Field(default=None, description="Due date in ISO 8601 format")


class AddCommentArgs(_Args):
    card_id: str = Field(..., description="The card ID")
    text: str = Field(..., min_length=1, description="Comment text")


def _status(item: dict[str, Any], closed_label: str = "Closed") -> str:
    return closed_label if item.get("closed") else "Open"


def format_boards(boards: list[dict[str, Any]]) -> str:
    if not boards:
        return "No boards found."

    lines = [f"Found {len(boards)} boards:", ""]
    lines += [
        f"- [{_status(b)}] {b.get('name')} (ID: {b.get('id')}, URL: {b.get('shortUrl', '')})"
        for b in boards
    ]
    return "\n".join(lines) + "\n"


def format_board(board: dict[str, Any]) -> str:
    lines = [
        f"Board: {board.get('name')}",
        f"ID: {board.get('id')}",
        f"Status: {_status(board)}",
        f"URL: {board.get('shortUrl', '')}",
    ]
    if board.get("desc"):
        lines.append(f"Description: {board['desc']}")
    return "\n".join(lines) + "\n"


def format_lists(lists: list[dict[str, Any]]) -> str:
    if not lists:
        return "No lists found."

    lines = [f"Found {len(lists)} lists:", ""]
    lines += [f"- [{_status(item)}] {item.get('name')} (ID: {item.get('id')})" for item in lists]
    return "\n".join(lines) + "\n"


def format_cards(cards: list[dict[str, Any]]) -> str:
    if not cards:
        return "No cards found."

    lines = [f"Found {len(cards)} cards:", ""]
    for card in cards:
        lines.append(
            f"- [{_status(card, 'Archived')}] {card.get('name')} "
            f"(ID: {card.get('id')}, URL: {card.get('shortUrl', '')})"
        )
        if card.get("desc"):
            lines.append(f"  Description: {card['desc']}")
        if card.get("due"):
            lines.append(f"  Due: {card['due']}")
    return "\n".join(lines) + "\n"


def format_card(card: dict[str, Any]) -> str:
    lines = [
        f"Card: {card.get('name')}",
        f"ID: {card.get('id')}",
        f"Status: {_status(card, 'Archived')}",
        f"URL: {card.get('shortUrl', '')}",
    ]
    if card.get("desc"):
        lines.append(f"Description: {card['desc']}")
    if card.get("due"):
        lines.append(f"Due: {card['due']}")
    labels = card.get("labels") or []
    if labels:
        lines.append("Labels: " + ", ".join(f"{l.get('name')} ({l.get('color')})" for l in labels))
    return "\n".join(lines) + "\n"


def format_members(members: list[dict[str, Any]]) -> str:
    if not members:
        return "No members found."

    lines = [f"Found {len(members)} members:", ""]
    lines += [f"- {m.get('fullName')} (@{m.get('username')}, ID: {m.get('id')})" for m in members]
    return "\n".join(lines) + "\n"


class TrelloAdapter(BaseAdapter):
    """Trello adapter."""

    name = "trello"
    capability = "Trello (boards, lists, cards, comments, members)"

    def __init__(self, client: TrelloClient) -> None:
        self.client = client
        super().__init__()

    def _define_tools(self) -> None:
        self._register_tool(
            "trello_list_boards",
            "List all Trello boards accessible to the authenticated user",
            NoArgs, self._list_boards,
        )
        self._register_tool(
            "trello_get_board",
            "Get details of a specific Trello board by ID",
            BoardArgs, self._get_board,
        )
        self._register_tool(
            "trello_get_lists",
            "Get all lists from a Trello board",
            BoardArgs, self._get_lists,
        )
        self._register_tool(
            "trello_create_list",
            "Create a new list on a Trello board",
            CreateListArgs, self._create_list,
        )
        self._register_tool(
            "trello_create_card",
            "Create a new card on a Trello list",
            CreateCardArgs, self._create_card,
        )
        self._register_tool(
            "trello_get_card",
            "Get details of a specific Trello card by ID",
            CardArgs, self._get_card,
        )
        self._register_tool(
            "trello_get_cards_on_list",
            "Get all cards from a specific Trello list",
            ListArgs, self._get_cards_on_list,
        )
        self._register_tool(
            "trello_get_cards_on_board",
            "Get all cards from a Trello board",
            BoardArgs, self._get_cards_on_board,
        )
        self._register_tool(
            "trello_update_card",
            "Update an existing Trello card",
            UpdateCardArgs, self._update_card,
        )
        self._register_tool(
            "trello_add_comment",
            "Add a comment to a Trello card",
            AddCommentArgs, self._add_comment,
        )
        self._register_tool(
            "trello_get_board_members",
            "Get all members of a Trello board",
            BoardArgs, self._get_board_members,
        )

    async def close(self) -> None:
        await self.client.close()

    async def _list_boards(self, args: NoArgs) -> str:
        return format_boards(await self.client.list_boards())

    async def _get_board(self, args: BoardArgs) -> str:
        return format_board(await self.client.get_board(args.board_id))

    async def _get_lists(self, args: BoardArgs) -> str:
        return format_lists(await self.client.get_lists(args.board_id))

    async def _create_list(self, args: CreateListArgs) -> str:
        created = await self.client.create_list(args.board_id, args.name)
        return f"Created list '{created.get('name')}' (ID: {created.get('id')})"

    async def _create_card(self, args: CreateCardArgs) -> str:
        card = await self.client.create_card(
            args.list_id,
            args.name,
            description=args.description,
            position=args.position,
            due_date=args.due_date,
        )
        logger.info("Trello card created", card_id=card.get("id"), list_id=args.list_id)
        return f"Created card '{card.get('name')}' (ID: {card.get('id')}, URL: {card.get('shortUrl', '')})"

    async def _get_card(self, args: CardArgs) -> str:
        return format_card(await self.client.get_card(args.card_id))

    async def _get_cards_on_list(self, args: ListArgs) -> str:
        return format_cards(await self.client.get_cards_on_list(args.list_id))

    async def _get_cards_on_board(self, args: BoardArgs) -> str:
        return format_cards(await self.client.get_cards_on_board(args.board_id))

    async def _update_card(self, args: UpdateCardArgs) -> str:
        card = await self.client.update_card(
            args.card_id,
            name=args.name,
            description=args.description,
            closed=args.closed,
            list_id=args.list_id,
            due=args.due,
        )
        return f"Updated card '{card.get('name')}' (ID: {card.get('id')})"

    async def _add_comment(self, args: AddCommentArgs) -> str:
        comment = await self.client.add_comment(args.card_id, args.text)
        return f"Added comment to card (comment ID: {comment.get('id')})"

    async def _get_board_members(self, args: BoardArgs) -> str:
        return format_members(await self.client.get_board_members(args.board_id))


def create_trello_adapter(
    settings: TrelloSettings,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> TrelloAdapter:
    """Build the adapter from configuration."""
    client = TrelloClient(
        api_key=settings.api_key or "",
        token=settings.token or "",
        timeout=settings.timeout_seconds,
        transport=transport,
    )
    adapter = TrelloAdapter(client)
    logger.info("Trello domain loaded", tool_count=len(adapter.tool_names()))
    return adapter


__all__ = ["TrelloAdapter", "TrelloClient", "create_trello_adapter"]
