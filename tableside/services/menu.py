"""
Menu Catalog

Chef-side CRUD over the menu collection plus the diner-facing listing.
Menu documents are read-mostly; diners never write them and line items
copy the name and price at order time, so no session depends on a menu
document after the fact.
"""

import logging
from functools import lru_cache
from typing import Any, Callable, Optional

from tableside.core.config import Settings, get_settings
from tableside.core.exceptions import NotFoundError, SyncFailure, ValidationError
from tableside.schemas import MenuCategory, MenuItem, MenuItemCreate
from tableside.services.menu_data import FALLBACK_MENU, bulk_menu_documents
from tableside.services.store import (
    BaseDocumentStore,
    DocumentNotFoundError,
    DocumentSnapshot,
    StoreError,
    StoreQuery,
    Subscription,
    get_document_store,
)
from tableside.services.store.base import call_maybe_async

logger = logging.getLogger(__name__)


def fallback_items() -> list[MenuItem]:
    return [MenuItem.from_document(data["id"], data) for data in FALLBACK_MENU]


class MenuCatalog:
    """
    Menu operations against an injected document store.

    Example:
        >>> catalog = MenuCatalog(store)
        >>> items = await catalog.list_items(category=MenuCategory.RICE)
    """

    def __init__(self, store: BaseDocumentStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.collection = self.settings.menu_collection

    def _decode(self, snapshots: list[DocumentSnapshot]) -> list[MenuItem]:
        return [MenuItem.from_document(s.id, s.data) for s in snapshots]

    async def list_items(
        self,
        category: Optional[MenuCategory] = None,
        fallback: bool = True,
    ) -> list[MenuItem]:
        """
        Menu ordered by name.

        Args:
            category: Only return this category
            fallback: Serve the built-in menu when the collection is
                empty or the store cannot be reached

        Raises:
            SyncFailure: Store failure and ``fallback`` is False
        """
        try:
            items = self._decode(
                await self.store.query(StoreQuery(self.collection, order_by="name"))
            )
        except StoreError as exc:
            if not fallback:
                raise SyncFailure(f"Could not load the menu: {exc}") from exc
            logger.warning(f"Menu unavailable ({exc}), serving the built-in menu")
            items = []

        if not items and fallback:
            items = fallback_items()

        if category is not None:
            items = [item for item in items if item.category == category]
        return items

    async def get_item(self, item_id: str) -> MenuItem:
        try:
            snapshot = await self.store.get(self.collection, item_id)
        except StoreError as exc:
            raise SyncFailure(f"Could not load menu item: {exc}") from exc
        if snapshot is None:
            raise NotFoundError(f"Menu item {item_id} does not exist")
        return MenuItem.from_document(snapshot.id, snapshot.data)

    async def add_item(self, item: MenuItemCreate) -> MenuItem:
        """
        Add a menu item.

        Raises:
            ValidationError: Blank name or no full price
        """
        name = item.name.strip()
        if not name:
            raise ValidationError("Menu item name is required")
        if item.full <= 0:
            raise ValidationError("Menu item needs a full price")

        price: dict[str, Any] = {"full": item.full}
        if item.half and not item.no_portion:
            price["half"] = item.half

        data: dict[str, Any] = {
            "name": name,
            "mr_name": item.mr_name.strip(),
            "description": item.description.strip(),
            "mr_description": item.mr_description.strip(),
            "price": price,
            "image": item.image.strip(),
            "noPortion": item.no_portion,
            "category": item.category.value,
            "spiceLevel": item.spice_level.value,
        }
        if item.food_type is not None:
            data["foodType"] = item.food_type.value

        try:
            snapshot = await self.store.add(self.collection, data)
        except StoreError as exc:
            raise SyncFailure(f"Could not add menu item: {exc}") from exc

        logger.info(f"Menu item {snapshot.id} added: {name}")
        return MenuItem.from_document(snapshot.id, snapshot.data)

    async def delete_item(self, item_id: str) -> None:
        try:
            await self.store.delete(self.collection, item_id)
        except DocumentNotFoundError:
            raise NotFoundError(f"Menu item {item_id} does not exist")
        except StoreError as exc:
            raise SyncFailure(f"Could not delete menu item: {exc}") from exc
        logger.info(f"Menu item {item_id} deleted")

    async def bulk_import(self) -> tuple[int, int]:
        """
        Replace the whole catalogue with the standard card.

        Returns:
            (deleted count, added count)
        """
        try:
            existing = await self.store.query(StoreQuery(self.collection))
            deleted = 0
            for snapshot in existing:
                await self.store.delete(self.collection, snapshot.id)
                deleted += 1
            logger.info(f"Bulk import: deleted {deleted} menu items")

            added = 0
            for data in bulk_menu_documents():
                await self.store.add(self.collection, data)
                added += 1
        except StoreError as exc:
            logger.error(f"Bulk import failed: {exc}")
            raise SyncFailure(f"Menu import failed: {exc}") from exc

        logger.info(f"Bulk import: added {added} menu items")
        return deleted, added

    async def watch(
        self,
        on_change: Callable[[list[MenuItem]], Any],
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> Subscription:
        """Live menu feed, ordered by name."""
        async def deliver(snapshots: list[DocumentSnapshot]) -> None:
            await call_maybe_async(on_change, self._decode(snapshots))

        return await self.store.subscribe(
            StoreQuery(self.collection, order_by="name"), deliver, on_error
        )


@lru_cache()
def get_menu_catalog() -> MenuCatalog:
    """Menu catalog bound to the configured document store."""
    return MenuCatalog(get_document_store(), get_settings())
