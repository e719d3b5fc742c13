"""Shared test doubles: deterministic executors and an in-memory Grocy server"""

from concurrent.futures import Executor, Future
from typing import Any, Callable, Dict, List, Tuple

import pytest

from grocy_sync.exceptions import NetworkError
from grocy_sync.grocy_client import GrocyClient
from grocy_sync.models import (
    EntityType,
    MissingItem,
    Product,
    ProductGroup,
    QuantityUnit,
    ShoppingList,
    ShoppingListItem,
)
from grocy_sync.preferences import PreferenceStore
from grocy_sync.repository import ShoppingListRepository
from grocy_sync.sync_orchestrator import ShoppingListSync


class InlineExecutor(Executor):
    """Runs every submitted call immediately in the calling thread"""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class ManualExecutor(Executor):
    """
    Holds submitted calls until run_next() / run_all()

    Futures are marked running on submit, so Future.cancel() fails the way
    it does for work a thread pool already picked up.
    """

    def __init__(self):
        self.pending: List[Tuple[Future, Callable, tuple, dict]] = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        future.set_running_or_notify_cancel()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_next(self) -> None:
        future, fn, args, kwargs = self.pending.pop(0)
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            future.set_exception(e)
        else:
            future.set_result(result)

    def run_latest(self) -> None:
        """Run the most recently submitted call ahead of older ones"""
        self.pending.insert(0, self.pending.pop())
        self.run_next()

    def run_all(self) -> None:
        while self.pending:
            self.run_next()


class FakeGrocyClient:
    """In-memory Grocy server; every write bumps the change timestamp"""

    def __init__(self):
        self.version = 1
        self.offline = False
        self.edit_error = None
        self.calls: List[Tuple[str, tuple]] = []

        self.lists: Dict[int, ShoppingList] = {}
        self.items: Dict[int, ShoppingListItem] = {}
        self.groups: Dict[int, ProductGroup] = {}
        self.units: Dict[int, QuantityUnit] = {}
        self.products: Dict[int, Product] = {}
        self.missing: Dict[int, MissingItem] = {}

    @property
    def changed_time(self) -> str:
        return f"2024-03-01 10:00:{self.version:02d}"

    def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if self.offline:
            raise NetworkError(f"Connection to server failed during {name}")

    def _bump(self) -> None:
        self.version += 1

    def count(self, name: str) -> int:
        return sum(1 for call_name, _ in self.calls if call_name == name)

    def fetch_count(self) -> int:
        return sum(1 for name, _ in self.calls if name.startswith("get_") and name != "get_db_changed_time")

    # Reads

    def get_db_changed_time(self) -> str:
        self._call("get_db_changed_time")
        return self.changed_time

    def get_shopping_list_items(self):
        self._call("get_shopping_list_items")
        return tuple(self.items.values())

    def get_shopping_lists(self):
        self._call("get_shopping_lists")
        return tuple(self.lists.values())

    def get_product_groups(self):
        self._call("get_product_groups")
        return tuple(self.groups.values())

    def get_quantity_units(self):
        self._call("get_quantity_units")
        return tuple(self.units.values())

    def get_products(self):
        self._call("get_products")
        return tuple(self.products.values())

    def get_missing_items(self):
        self._call("get_missing_items")
        return tuple(self.missing.values())

    def fetcher_for(self, entity_type: EntityType):
        return {
            EntityType.SHOPPING_LIST_ITEMS: self.get_shopping_list_items,
            EntityType.SHOPPING_LISTS: self.get_shopping_lists,
            EntityType.PRODUCT_GROUPS: self.get_product_groups,
            EntityType.QUANTITY_UNITS: self.get_quantity_units,
            EntityType.PRODUCTS: self.get_products,
            EntityType.MISSING_ITEMS: self.get_missing_items,
        }[entity_type]

    # Writes

    def edit_shopping_list_item(self, item_id: int, fields: Dict[str, Any]) -> None:
        self._call("edit_shopping_list_item", item_id, dict(fields))
        if self.edit_error is not None:
            raise self.edit_error
        item = self.items[item_id]
        self.items[item_id] = ShoppingListItem(
            id=item.id,
            shopping_list_id=item.shopping_list_id,
            product_id=item.product_id,
            note=item.note,
            amount=item.amount,
            qu_id=item.qu_id,
            done=fields.get("done", item.done),
        )
        self._bump()

    def delete_shopping_list_item(self, item_id: int) -> None:
        self._call("delete_shopping_list_item", item_id)
        self.items.pop(item_id, None)
        self._bump()

    def edit_object(self, entity: str, object_id: int, fields: Dict[str, Any]) -> None:
        self._call("edit_object", entity, object_id, dict(fields))
        if entity == GrocyClient.ENTITY_SHOPPING_LISTS:
            shopping_list = self.lists[object_id]
            self.lists[object_id] = ShoppingList(
                shopping_list.id, shopping_list.name, fields.get("description") or None
            )
        self._bump()

    def delete_object(self, entity: str, object_id: int) -> None:
        self._call("delete_object", entity, object_id)
        if entity == GrocyClient.ENTITY_SHOPPING_LISTS:
            self.lists.pop(object_id, None)
        self._bump()

    def add_missing_products(self, list_id: int) -> None:
        self._call("add_missing_products", list_id)
        next_id = max(self.items, default=0) + 1
        for offset, missing in enumerate(self.missing.values()):
            self.items[next_id + offset] = ShoppingListItem(
                id=next_id + offset, shopping_list_id=list_id,
                product_id=missing.id, amount=missing.amount_missing,
            )
        self._bump()

    def clear_shopping_list(self, list_id: int) -> None:
        self._call("clear_shopping_list", list_id)
        for item_id in [i.id for i in self.items.values() if i.shopping_list_id == list_id]:
            del self.items[item_id]
        self._bump()


def populate(client: FakeGrocyClient) -> FakeGrocyClient:
    """Two lists, three products in two groups, four items"""
    client.lists = {
        1: ShoppingList(1, "Groceries", "Buy before Friday"),
        2: ShoppingList(2, "Hardware"),
    }
    client.groups = {
        1: ProductGroup(1, "Dairy"),
        2: ProductGroup(2, "Bakery"),
    }
    client.units = {1: QuantityUnit(1, "Piece", "Pieces")}
    client.products = {
        1: Product(1, "Milk", "Whole milk", product_group_id=1, qu_id_purchase=1),
        2: Product(2, "Bread", product_group_id=2, qu_id_purchase=1),
        3: Product(3, "Nails", qu_id_purchase=1),
    }
    client.missing = {1: MissingItem(1, "Milk", 2.0)}
    client.items = {
        1: ShoppingListItem(1, 1, product_id=1, amount=2.0, qu_id=1),
        2: ShoppingListItem(2, 1, product_id=2, done=1),
        3: ShoppingListItem(3, 1, note="Birthday candles"),
        4: ShoppingListItem(4, 2, product_id=3, amount=50.0),
    }
    return client


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "grocy_sync.db")


@pytest.fixture
def repository(db_path):
    repo = ShoppingListRepository(db_path)
    yield repo
    repo.close()


@pytest.fixture
def preferences(db_path):
    store = PreferenceStore(db_path)
    yield store
    store.close()


@pytest.fixture
def server():
    return populate(FakeGrocyClient())


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def manual_executor():
    return ManualExecutor()


@pytest.fixture
def make_sync(db_path, inline_executor):
    """Factory for orchestrators sharing one cache database"""
    created = []

    def factory(client, executor=None, multiple_lists=None):
        sync = ShoppingListSync(
            client,
            ShoppingListRepository(db_path),
            PreferenceStore(db_path),
            executor=executor or inline_executor,
            multiple_lists=multiple_lists,
        )
        created.append(sync)
        return sync

    yield factory
    for sync in created:
        sync.close()
