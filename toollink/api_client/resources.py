"""Resource APIs: orders, inventory, deliveries, users.

Thin wrappers over ToolLinkClient. The server enforces every business
rule (status workflows included); these only shape requests.
"""

from __future__ import annotations

from typing import Any

from toollink.api_client.client import ToolLinkClient


def _items(data: dict[str, Any], *keys: str) -> list[dict[str, Any]]:
    """Pick the first list-valued key from a backend envelope."""
    for key in (*keys, "data", "items"):
        value = data.get(key)
        if isinstance(value, list):
            return value
    return []


class OrdersAPI:
    def __init__(self, client: ToolLinkClient) -> None:
        self._client = client

    async def list(self, status: str = "", page: int = 1, limit: int = 20) -> list[dict[str, Any]]:
        """GET /api/orders"""
        params: dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        return _items(await self._client.get("/api/orders", params=params), "orders")

    async def mine(self) -> list[dict[str, Any]]:
        """GET /api/orders/my-orders"""
        return _items(await self._client.get("/api/orders/my-orders"), "orders")

    async def get(self, order_id: str) -> dict[str, Any]:
        """GET /api/orders/{id}"""
        data = await self._client.get(f"/api/orders/{order_id}")
        return data.get("order", data)

    async def create(self, order: dict[str, Any]) -> dict[str, Any]:
        """POST /api/orders"""
        return await self._client.send("POST", "/api/orders", order)

    async def update_status(self, order_id: str, status: str, note: str = "") -> dict[str, Any]:
        """PATCH /api/orders/{id}/status"""
        body: dict[str, Any] = {"status": status}
        if note:
            body["note"] = note
        return await self._client.send("PATCH", f"/api/orders/{order_id}/status", body)


class InventoryAPI:
    def __init__(self, client: ToolLinkClient) -> None:
        self._client = client

    async def list(self, category: str = "", search: str = "") -> list[dict[str, Any]]:
        """GET /api/inventory"""
        params: dict[str, Any] = {}
        if category:
            params["category"] = category
        if search:
            params["search"] = search
        return _items(await self._client.get("/api/inventory", params=params or None), "items")

    async def stats(self) -> dict[str, Any]:
        """GET /api/inventory/stats"""
        return await self._client.get("/api/inventory/stats")

    async def low_stock(self) -> list[dict[str, Any]]:
        """GET /api/inventory/low-stock"""
        return _items(await self._client.get("/api/inventory/low-stock"), "items")

    async def create(self, item: dict[str, Any]) -> dict[str, Any]:
        """POST /api/inventory"""
        return await self._client.send("POST", "/api/inventory", item)

    async def update_quantity(
        self, item_id: str, quantity: int, operation: str = "set", reason: str = ""
    ) -> dict[str, Any]:
        """PATCH /api/inventory/{id}/quantity

        operation: "set", "add" (stock in) or "subtract" (stock out).
        """
        if operation not in ("set", "add", "subtract"):
            msg = f"Unknown quantity operation: {operation!r}"
            raise ValueError(msg)
        body: dict[str, Any] = {"quantity": quantity, "operation": operation}
        if reason:
            body["reason"] = reason
        return await self._client.send("PATCH", f"/api/inventory/{item_id}/quantity", body)


class DeliveriesAPI:
    def __init__(self, client: ToolLinkClient) -> None:
        self._client = client

    async def list(self, status: str = "") -> list[dict[str, Any]]:
        """GET /api/delivery"""
        params = {"status": status} if status else None
        return _items(await self._client.get("/api/delivery", params=params), "deliveries")

    async def mine(self) -> list[dict[str, Any]]:
        """GET /api/delivery/my-deliveries"""
        return _items(await self._client.get("/api/delivery/my-deliveries"), "deliveries")

    async def get(self, delivery_id: str) -> dict[str, Any]:
        """GET /api/delivery/{id}"""
        data = await self._client.get(f"/api/delivery/{delivery_id}")
        return data.get("delivery", data)

    async def update_status(self, delivery_id: str, status: str) -> dict[str, Any]:
        """PATCH /api/delivery/{id}/status (the server validates the transition)"""
        return await self._client.send(
            "PATCH", f"/api/delivery/{delivery_id}/status", {"status": status}
        )


class UsersAPI:
    def __init__(self, client: ToolLinkClient) -> None:
        self._client = client

    async def list(self, role: str = "") -> list[dict[str, Any]]:
        """GET /api/users"""
        params = {"role": role} if role else None
        return _items(await self._client.get("/api/users", params=params), "users")

    async def profile(self) -> dict[str, Any]:
        """GET /api/users/profile"""
        data = await self._client.get("/api/users/profile")
        return data.get("user", data)

    async def update_profile(self, changes: dict[str, Any]) -> dict[str, Any]:
        """PUT /api/users/profile"""
        return await self._client.send("PUT", "/api/users/profile", changes)
