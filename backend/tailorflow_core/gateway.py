from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from .errors import AuthError, GatewayError, ServerError, TransportError
from .identifiers import Identifier
from .models import ORDERS, Collection, Order, OrderItem, OrderItemExtra

logger = logging.getLogger(__name__)


class RemoteGateway:
    """CRUD client for the Supabase REST API, one table per collection.

    Every method issues single requests and reports failure as a
    ``GatewayError`` subclass. Nothing here retries or falls back; that is the
    coordinator's job.
    """

    def __init__(
        self,
        tenant_scope: str | None = None,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.supabase_url = os.getenv("SUPABASE_URL", "")
        self.supabase_key = (
            os.getenv("SUPABASE_ANON_KEY")
            or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_SERVICE_KEY")
            or ""
        )
        self.supabase_schema = os.getenv("SUPABASE_SCHEMA", "public")
        self.order_items_table = os.getenv("SUPABASE_ORDER_ITEMS_TABLE", "order_items")
        self.order_item_extras_table = os.getenv("SUPABASE_ORDER_ITEM_EXTRAS_TABLE", "order_item_extras")
        try:
            self.timeout = float(os.getenv("SUPABASE_TIMEOUT", "10"))
        except ValueError:
            self.timeout = 10.0
        self.tenant_scope = tenant_scope
        self.access_token = access_token
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def bind_session(self, tenant_scope: str | None, access_token: str | None) -> None:
        self.tenant_scope = tenant_scope
        self.access_token = access_token

    def table_for(self, collection: Collection) -> str:
        return os.getenv(collection.table_env, collection.default_table)

    # ------------------------------------------------------------------
    # Uniform collection contract

    async def list(self, collection: Collection) -> List[Any]:
        operation = f"list_{collection.name}"
        params = {
            "select": "*",
            "shop_id": f"eq.{self._require_scope(operation)}",
            "order": collection.order_by,
        }
        rows = await self._request("GET", self.table_for(collection), operation, params=params)
        rows = [row for row in rows or [] if isinstance(row, dict)]

        if collection is ORDERS:
            return await self._hydrate_orders(rows)
        return [collection.entity.from_row(row) for row in rows]

    async def create(self, collection: Collection, record: Any) -> Any:
        """Insert ``record`` as a new row; returns the record as the remote store sees it.

        Orders are created without their items; see ``create_order_item``.
        """
        operation = f"create_{collection.name}"
        payload = {"shop_id": self._require_scope(operation), **record.to_row()}
        row = await self._write_one("POST", self.table_for(collection), operation, payload)
        if collection is ORDERS:
            return Order.from_row(row)
        return collection.entity.from_row(row)

    async def update(self, collection: Collection, record_id: Identifier, record: Any) -> Any:
        operation = f"update_{collection.name}"
        row = await self._write_one(
            "PATCH",
            self.table_for(collection),
            operation,
            record.to_row(),
            params={"id": f"eq.{record_id}"},
        )
        if collection is ORDERS:
            return Order.from_row(row)
        return collection.entity.from_row(row)

    async def delete(self, collection: Collection, record_id: Identifier) -> None:
        await self._request(
            "DELETE",
            self.table_for(collection),
            f"delete_{collection.name}",
            params={"id": f"eq.{record_id}"},
        )

    # ------------------------------------------------------------------
    # Order line items

    async def create_order_item(self, order_id: Identifier, item: OrderItem) -> OrderItem:
        row = await self._write_one("POST", self.order_items_table, "create_order_item", item.to_row(order_id))
        return OrderItem.from_row(row, [])

    async def create_item_extra(self, order_item_id: Identifier, extra: OrderItemExtra) -> OrderItemExtra:
        row = await self._write_one(
            "POST",
            self.order_item_extras_table,
            "create_order_item_extra",
            extra.to_row(order_item_id),
        )
        return OrderItemExtra.from_row(row)

    async def delete_order_items(self, order_id: Identifier) -> None:
        await self._request(
            "DELETE",
            self.order_items_table,
            "delete_order_items",
            params={"order_id": f"eq.{order_id}"},
        )

    async def _hydrate_orders(self, rows: List[Dict[str, Any]]) -> List[Order]:
        order_ids = [str(row.get("id")) for row in rows if row.get("id")]
        items_by_order: Dict[str, List[OrderItem]] = {}
        if order_ids:
            item_rows = await self._request(
                "GET",
                self.order_items_table,
                "list_order_items",
                params={"select": "*", "order_id": _in_filter(order_ids), "order": "created_at.asc"},
            )
            item_rows = [row for row in item_rows or [] if isinstance(row, dict)]

            extras_by_item: Dict[str, List[OrderItemExtra]] = {}
            item_ids = [str(row.get("id")) for row in item_rows if row.get("id")]
            if item_ids:
                extra_rows = await self._request(
                    "GET",
                    self.order_item_extras_table,
                    "list_order_item_extras",
                    params={"select": "*", "order_item_id": _in_filter(item_ids), "order": "created_at.asc"},
                )
                for extra_row in extra_rows or []:
                    if isinstance(extra_row, dict):
                        key = str(extra_row.get("order_item_id"))
                        extras_by_item.setdefault(key, []).append(OrderItemExtra.from_row(extra_row))

            for item_row in item_rows:
                key = str(item_row.get("order_id"))
                extras = extras_by_item.get(str(item_row.get("id")), [])
                items_by_order.setdefault(key, []).append(OrderItem.from_row(item_row, extras))

        return [Order.from_row(row, items_by_order.get(str(row.get("id")), [])) for row in rows]

    # ---- internal Supabase helpers -------------------------------------------------

    def _require_scope(self, operation: str) -> str:
        if not self.tenant_scope:
            raise AuthError("Shop ID not set. Please login first.", operation=operation)
        return self.tenant_scope

    def _supabase_endpoint(self, table: str) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{table}"

    def _supabase_headers(self, prefer: str | None = None) -> Dict[str, str]:
        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.access_token or self.supabase_key}",
            "Accept": "application/json",
        }
        if self.supabase_schema and self.supabase_schema != "public":
            headers["Content-Profile"] = self.supabase_schema
            headers["Accept-Profile"] = self.supabase_schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _write_one(
        self,
        method: str,
        table: str,
        operation: str,
        payload: Dict[str, Any],
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        rows = await self._request(
            method,
            table,
            operation,
            params={"select": "*", **(params or {})},
            json=payload,
            prefer="return=representation",
        )
        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            return rows[0]
        if isinstance(rows, dict) and rows:
            return rows
        if method == "PATCH":
            raise ServerError(f"Supabase {operation} matched no rows", operation=operation, status_code=404)
        raise ServerError(f"Unexpected response from Supabase {operation}", operation=operation)

    async def _request(
        self,
        method: str,
        table: str,
        operation: str,
        params: Dict[str, Any] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        if not self.configured:
            raise TransportError("Supabase configuration is incomplete", operation=operation)

        headers = self._supabase_headers(prefer)
        if json is not None:
            headers["Content-Type"] = "application/json"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    self._supabase_endpoint(table),
                    params=params,
                    json=json,
                    headers=headers,
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise self._status_error(exc.response, operation) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Supabase {operation} unavailable: {exc}", operation=operation) from exc

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ServerError(
                f"Supabase {operation} returned a non-JSON body",
                operation=operation,
                status_code=response.status_code,
            ) from exc

    def _status_error(self, response: httpx.Response, operation: str) -> GatewayError:
        status_code = response.status_code
        detail = self._extract_supabase_detail(response)
        message = f"Supabase {operation} failed ({status_code})"
        if detail:
            message = f"{message}: {detail}"
        if status_code in (401, 403):
            return AuthError(message, operation=operation)
        if status_code in (408, 502, 503, 504):
            return TransportError(message, operation=operation)
        return ServerError(message, operation=operation, status_code=status_code, detail=detail)

    def _extract_supabase_detail(self, response: httpx.Response | None) -> Optional[str]:
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError:
            text = (response.text or "").strip()
            return text or None

        if isinstance(payload, list) and payload:
            payload = payload[0]
        if isinstance(payload, dict):
            for key in ("message", "detail", "error", "hint", "code"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None


def _in_filter(values: List[str]) -> str:
    return "in.(" + ",".join(values) + ")"
