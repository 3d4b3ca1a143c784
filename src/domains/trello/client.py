"""Trello REST client.

Every request carries the API key and token as query parameters.
"""

from typing import Any, Optional

import httpx

from domains.base import RESTClient

TRELLO_API_URL = "https://api.trello.com/1"


class TrelloClient:
    """Boards, lists, cards, comments and members."""

    def __init__(
        self,
        api_key: str,
        token: str,
        timeout: float = 30,
        base_url: str = TRELLO_API_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._rest = RESTClient(
            base_url,
            timeout=timeout,
            params={"key": api_key, "token": token},
            transport=transport,
        )

    async def close(self) -> None:
        await self._rest.close()

    async def list_boards(self) -> list[dict[str, Any]]:
        return await self._rest.get("/members/me/boards")

    async def get_board(self, board_id: str) -> dict[str, Any]:
        return await self._rest.get(f"/boards/{board_id}")

    async def get_lists(self, board_id: str) -> list[dict[str, Any]]:
        return await self._rest.get(f"/boards/{board_id}/lists")

    async def create_list(self, board_id: str, name: str) -> dict[str, Any]:
        return await self._rest.post("/lists", params={"name": name, "idBoard": board_id})

    async def create_card(
        self,
        list_id: str,
        name: str,
        description: Optional[str] = None,
        position: Optional[str] = None,
        due_date: Optional[str] = None,
    ) -> dict[str, Any]:
        params = {"name": name, "idList": list_id}
        if description:
            params["desc"] = description
        if position:
            params["pos"] = position
        if due_date:
            params["due"] = due_date
        return await self._rest.post("/cards", params=params)

    async def get_card(self, card_id: str) -> dict[str, Any]:
        return await self._rest.get(f"/cards/{card_id}")

    async def get_cards_on_list(self, list_id: str) -> list[dict[str, Any]]:
        return await self._rest.get(f"/lists/{list_id}/cards")

    async def get_cards_on_board(self, board_id: str) -> list[dict[str, Any]]:
        return await self._rest.get(f"/boards/{board_id}/cards")

    async def update_card(
        self,
        card_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        closed: Optional[bool] = None,
        list_id: Optional[str] = None,
        due: Optional[str] = None,
    ) -> dict[str, Any]:
        params: dict[str, str] = {}
        if name is not None:
            params["name"] = name
        if description is not None:
            params["desc"] = description
        if closed is not None:
            params["closed"] = "true" if closed else "false"
        if list_id is not None:
            params["idList"] = list_id
        if due is not None:
            params["due"] = due
        return await self._rest.put(f"/cards/{card_id}", params=params)

    async def add_comment(self, card_id: str, text: str) -> dict[str, Any]:
        return await self._rest.post(f"/cards/{card_id}/actions/comments", params={"text": text})

    async def get_board_members(self, board_id: str) -> list[dict[str, Any]]:
        return await self._rest.get(f"/boards/{board_id}/members")
