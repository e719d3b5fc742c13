"""Data models for shopping list sync"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from .exceptions import MalformedServerRecord

# Sentinel for "no pending local mutation" in ShoppingListItem.done_synced
NOT_PENDING = -1

DEFAULT_SHOPPING_LIST_ID = 1


class EntityType(Enum):
    """Resource types cached locally, valued by their preference key suffix"""

    SHOPPING_LIST_ITEMS = "shopping_list_items"
    SHOPPING_LISTS = "shopping_lists"
    PRODUCT_GROUPS = "product_groups"
    QUANTITY_UNITS = "quantity_units"
    PRODUCTS = "products"
    MISSING_ITEMS = "volatile_missing"

    @property
    def preference_key(self) -> str:
        """Key under which the last-synced change timestamp is stored"""
        return f"db_last_time_{self.value}"


class SyncState(Enum):
    """Phases of the sync orchestrator"""

    IDLE = "idle"
    CHECKING_TIMESTAMP = "checking_timestamp"
    DOWNLOADING = "downloading"
    RECONCILING = "reconciling"
    PUSHING_MUTATIONS = "pushing_mutations"
    TIDYING_UP = "tidying_up"
    OFFLINE = "offline"


def _require(data: Dict[str, Any], key: str, record_type: str) -> Any:
    if not isinstance(data, dict):
        raise MalformedServerRecord(record_type, data, "not an object")
    if key not in data or data[key] is None:
        raise MalformedServerRecord(record_type, data, f"missing '{key}'")
    return data[key]


def _to_int(value: Any, key: str, record_type: str, data: Dict[str, Any]) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedServerRecord(record_type, data, f"'{key}' is not an integer")


def _optional_int(data: Dict[str, Any], key: str, record_type: str) -> Optional[int]:
    value = data.get(key)
    if value is None or value == "":
        return None
    return _to_int(value, key, record_type, data)


def _to_float(value: Any, key: str, record_type: str, data: Dict[str, Any]) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise MalformedServerRecord(record_type, data, f"'{key}' is not a number")


@dataclass(frozen=True)
class ShoppingListItem:
    """Entry of a shopping list, either a product or a free-text note"""

    id: int
    shopping_list_id: int
    product_id: Optional[int] = None
    note: Optional[str] = None
    amount: float = 1.0
    qu_id: Optional[int] = None
    done: int = 0
    done_synced: int = NOT_PENDING

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ShoppingListItem":
        record_type = "shopping list item"
        item_id = _to_int(_require(data, "id", record_type), "id", record_type, data)
        list_id = data.get("shopping_list_id")
        return cls(
            id=item_id,
            shopping_list_id=(
                DEFAULT_SHOPPING_LIST_ID if list_id in (None, "")
                else _to_int(list_id, "shopping_list_id", record_type, data)
            ),
            product_id=_optional_int(data, "product_id", record_type),
            note=data.get("note") or None,
            amount=_to_float(data.get("amount", 1), "amount", record_type, data),
            qu_id=_optional_int(data, "qu_id", record_type),
            done=1 if _to_int(data.get("done") or 0, "done", record_type, data) else 0,
        )

    @property
    def is_undone(self) -> bool:
        return self.done == 0

    @property
    def has_pending_mutation(self) -> bool:
        return self.done_synced != NOT_PENDING

    def toggled(self) -> "ShoppingListItem":
        """
        Flip the done state locally.

        The shadow field keeps the value before the first local change and
        is not overwritten by later toggles until the server confirms.
        """
        done_synced = self.done if self.done_synced == NOT_PENDING else self.done_synced
        return replace(self, done=0 if self.done else 1, done_synced=done_synced)

    def with_confirmed_done(self, done: int) -> "ShoppingListItem":
        """Return the record as confirmed by the server with the given done state"""
        return replace(self, done=done, done_synced=NOT_PENDING)


@dataclass(frozen=True)
class ShoppingList:
    id: int
    name: str
    description: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ShoppingList":
        record_type = "shopping list"
        return cls(
            id=_to_int(_require(data, "id", record_type), "id", record_type, data),
            name=str(_require(data, "name", record_type)),
            description=data.get("description") or None,
        )


@dataclass(frozen=True)
class ProductGroup:
    id: int
    name: str
    description: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ProductGroup":
        record_type = "product group"
        return cls(
            id=_to_int(_require(data, "id", record_type), "id", record_type, data),
            name=str(_require(data, "name", record_type)),
            description=data.get("description") or None,
        )


@dataclass(frozen=True)
class QuantityUnit:
    id: int
    name: str
    name_plural: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "QuantityUnit":
        record_type = "quantity unit"
        return cls(
            id=_to_int(_require(data, "id", record_type), "id", record_type, data),
            name=str(_require(data, "name", record_type)),
            name_plural=data.get("name_plural") or None,
        )


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    description: Optional[str] = None
    product_group_id: Optional[int] = None
    qu_id_purchase: Optional[int] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Product":
        record_type = "product"
        return cls(
            id=_to_int(_require(data, "id", record_type), "id", record_type, data),
            name=str(_require(data, "name", record_type)),
            description=data.get("description") or None,
            product_group_id=_optional_int(data, "product_group_id", record_type),
            qu_id_purchase=_optional_int(data, "qu_id_purchase", record_type),
        )


@dataclass(frozen=True)
class MissingItem:
    """Product below its minimum stock amount; id is the product id"""

    id: int
    name: str
    amount_missing: float = 0.0
    is_partly_in_stock: bool = False

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "MissingItem":
        record_type = "missing item"
        return cls(
            id=_to_int(_require(data, "id", record_type), "id", record_type, data),
            name=str(_require(data, "name", record_type)),
            amount_missing=_to_float(
                data.get("amount_missing", 0), "amount_missing", record_type, data
            ),
            is_partly_in_stock=str(data.get("is_partly_in_stock", "0")) in ("1", "True", "true"),
        )


@dataclass(frozen=True)
class Snapshot:
    """Last known server state of every cached resource type"""

    items: Tuple[ShoppingListItem, ...] = ()
    lists: Tuple[ShoppingList, ...] = ()
    groups: Tuple[ProductGroup, ...] = ()
    units: Tuple[QuantityUnit, ...] = ()
    products: Tuple[Product, ...] = ()
    missing_items: Tuple[MissingItem, ...] = ()

    _FIELDS = {
        EntityType.SHOPPING_LIST_ITEMS: "items",
        EntityType.SHOPPING_LISTS: "lists",
        EntityType.PRODUCT_GROUPS: "groups",
        EntityType.QUANTITY_UNITS: "units",
        EntityType.PRODUCTS: "products",
        EntityType.MISSING_ITEMS: "missing_items",
    }

    def get(self, entity_type: EntityType) -> tuple:
        return getattr(self, self._FIELDS[entity_type])

    def replace_entity(self, entity_type: EntityType, records) -> "Snapshot":
        """Return a new snapshot with one resource type wholesale-replaced"""
        return replace(self, **{self._FIELDS[entity_type]: tuple(records)})


@dataclass(frozen=True)
class GroupHeader:
    """Separator row in the grouped view"""

    name: str


Row = Union[GroupHeader, ShoppingListItem]


@dataclass(frozen=True)
class ShoppingListView:
    """Read-only state published to the presentation layer after each settle point"""

    rows: Tuple[Row, ...] = ()
    selected_list_id: int = DEFAULT_SHOPPING_LIST_ID
    missing_count: int = 0
    undone_count: int = 0
    is_offline: bool = False
    is_loading: bool = False
    state: SyncState = SyncState.IDLE
    notes: Optional[str] = None

    @property
    def items(self) -> Tuple[ShoppingListItem, ...]:
        return tuple(row for row in self.rows if isinstance(row, ShoppingListItem))

    def __repr__(self) -> str:
        flags = []
        if self.is_offline:
            flags.append("offline")
        if self.is_loading:
            flags.append("loading")
        flag_str = ",".join(flags) if flags else self.state.value
        return (f"ShoppingListView(list={self.selected_list_id}, "
                f"{len(self.items)} items, {flag_str})")
