from __future__ import annotations

import logging

from sharespace.backend.query import Order
from sharespace.backend.realtime import ChangePayload, Subscription
from sharespace.client.client import MarketplaceClient
from sharespace.core.errors import AuthenticationError, NotFoundError
from sharespace.models.enums import ProductStatus
from sharespace.schemas.base import validate_input
from sharespace.schemas.product import ProductDraft, ProductOut, ProductUpdate
from sharespace.stores.session import SessionStore


log = logging.getLogger(__name__)


class CatalogStore:
    """In-memory mirror of the products table.

    Every write goes to the backend first and is followed by a full refresh;
    the snapshot is never patched locally.
    """

    def __init__(self, client: MarketplaceClient, session: SessionStore):
        self._client = client
        self._session = session
        self._products: list[ProductOut] = []
        self._sub: Subscription | None = None

    @property
    def products(self) -> list[ProductOut]:
        return list(self._products)

    async def start(self) -> None:
        if self._sub is None:
            self._sub = self._client.subscribe("products", self._on_change)
        await self.refresh()

    async def aclose(self) -> None:
        if self._sub is not None:
            self._client.unsubscribe(self._sub)
            self._sub = None
        self._products = []

    async def _on_change(self, payload: ChangePayload) -> None:
        log.debug("[catalog] %s on products, refreshing", payload.event.value)
        await self.refresh()

    async def refresh(self) -> list[ProductOut]:
        rows = await self._client.select(
            "products",
            joins=("seller",),
            order=(Order("created_at", desc=True),),
        )
        self._products = [ProductOut.model_validate(r) for r in rows]
        return self.products

    # --- reads ---

    def by_id(self, product_id: int) -> ProductOut | None:
        return next((p for p in self._products if p.id == product_id), None)

    def by_seller(self, seller_id: int) -> list[ProductOut]:
        return [p for p in self._products if p.seller_id == seller_id]

    def active(self) -> list[ProductOut]:
        """What buyers browse: not blocked and not sold."""
        return [p for p in self._products if p.is_listed]

    def blocked(self) -> list[ProductOut]:
        return [p for p in self._products if p.status == ProductStatus.blocked]

    def categories(self) -> list[str]:
        return sorted({p.category for p in self.active()})

    def search(self, query: str | None = None, category: str | None = None) -> list[ProductOut]:
        q = (query or "").strip().lower()
        out = []
        for p in self.active():
            if category and category != "all" and p.category != category:
                continue
            if q and q not in p.title.lower() and q not in (p.description or "").lower():
                continue
            out.append(p)
        return out

    # --- writes ---

    async def add(self, draft: ProductDraft | dict) -> ProductOut:
        if self._session.user_id is None:
            raise AuthenticationError("Sign in to list a product")
        data = validate_input(ProductDraft, draft)
        row = await self._client.insert(
            "products",
            {**data.model_dump(mode="python"), "seller_id": self._session.user_id},
        )
        await self.refresh()
        return self.by_id(row["id"]) or ProductOut.model_validate(row)

    async def update(self, product_id: int, fields: ProductUpdate | dict) -> ProductOut:
        data = validate_input(ProductUpdate, fields)
        patch = data.model_dump(mode="python", exclude_unset=True)
        rows = await self._client.update("products", {"id": product_id}, patch)
        if not rows:
            raise NotFoundError("Product not found")
        await self.refresh()
        return self.by_id(product_id) or ProductOut.model_validate(rows[0])

    async def set_blocked(self, product_id: int, blocked: bool) -> ProductOut:
        status = ProductStatus.blocked if blocked else ProductStatus.active
        return await self.update(product_id, {"status": status})

    async def mark_sold(self, product_id: int, sold: bool = True) -> ProductOut:
        return await self.update(product_id, {"is_sold": sold})

    async def remove(self, product_id: int) -> None:
        rows = await self._client.delete("products", {"id": product_id})
        if not rows:
            raise NotFoundError("Product not found")
        await self.refresh()
