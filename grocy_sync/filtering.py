"""Filtering and grouping of shopping list items for the published view"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .models import (
    GroupHeader,
    MissingItem,
    Product,
    ProductGroup,
    Row,
    ShoppingListItem,
)

UNGROUPED_NAME = "Ungrouped"


class FilterState(Enum):
    NOTHING = "all"
    MISSING = "missing"
    UNDONE = "undone"


@dataclass(frozen=True)
class FilterResult:
    items: Tuple[ShoppingListItem, ...]
    missing_count: int
    undone_count: int


def display_name(item: ShoppingListItem, products_by_id: Dict[int, Product]) -> str:
    product = products_by_id.get(item.product_id) if item.product_id is not None else None
    if product is not None:
        return product.name
    return item.note or ""


def _matches_search(item: ShoppingListItem, search: str,
                    products_by_id: Dict[int, Product]) -> bool:
    product = products_by_id.get(item.product_id) if item.product_id is not None else None
    if product is not None:
        name, description = product.name, product.description
    else:
        name, description = item.note, None
    name = (name or "").lower()
    description = (description or "").lower()
    return search in name or search in description


def filter_items(
    items: Iterable[ShoppingListItem],
    selected_list_id: int,
    search: Optional[str] = None,
    filter_state: FilterState = FilterState.NOTHING,
    products: Sequence[Product] = (),
    missing_items: Sequence[MissingItem] = (),
) -> FilterResult:
    """
    Items of the selected list matching search and filter

    Missing and undone counts cover the whole selected list, regardless of
    search and filter.
    """
    products_by_id = {product.id: product for product in products}
    missing_ids: Set[int] = {missing.id for missing in missing_items}
    search = search.lower() if search else None

    filtered: List[ShoppingListItem] = []
    missing_count = 0
    undone_count = 0

    for item in items:
        if item.shopping_list_id != selected_list_id:
            continue
        is_missing = item.product_id is not None and item.product_id in missing_ids
        if is_missing:
            missing_count += 1
        if item.is_undone:
            undone_count += 1

        if search and not _matches_search(item, search, products_by_id):
            continue

        if (filter_state == FilterState.NOTHING
                or filter_state == FilterState.MISSING and is_missing
                or filter_state == FilterState.UNDONE and item.is_undone):
            filtered.append(item)

    return FilterResult(tuple(filtered), missing_count, undone_count)


def group_items(
    items: Iterable[ShoppingListItem],
    products: Sequence[Product] = (),
    groups: Sequence[ProductGroup] = (),
) -> Tuple[Row, ...]:
    """
    Flatten items into header and item rows grouped by product group

    Groups are sorted by name with items without a group last; items inside
    a group are sorted by display name.
    """
    products_by_id = {product.id: product for product in products}
    group_names = {group.id: group.name for group in groups}

    grouped: Dict[str, List[ShoppingListItem]] = {}
    for item in items:
        product = products_by_id.get(item.product_id) if item.product_id is not None else None
        group_name = None
        if product is not None and product.product_group_id is not None:
            group_name = group_names.get(product.product_group_id)
        grouped.setdefault(group_name or UNGROUPED_NAME, []).append(item)

    names = sorted((name for name in grouped if name != UNGROUPED_NAME), key=str.lower)
    if UNGROUPED_NAME in grouped:
        names.append(UNGROUPED_NAME)

    rows: List[Row] = []
    for name in names:
        rows.append(GroupHeader(name))
        rows.extend(sorted(grouped[name],
                           key=lambda item: display_name(item, products_by_id).lower()))
    return tuple(rows)
