"""Removal of shopping list items whose list no longer exists"""

import logging
from concurrent.futures import Executor
from functools import partial
from typing import Callable, Iterable, List, Optional, Set

from .download_queue import DownloadQueue, Operation
from .models import DEFAULT_SHOPPING_LIST_ID, ShoppingList, ShoppingListItem

logger = logging.getLogger(__name__)


def valid_list_ids(lists: Iterable[ShoppingList], multiple_lists_enabled: bool) -> Set[int]:
    """
    Ids an item may reference

    With multiple lists disabled only the default list is valid. With it
    enabled and no list known (e.g. after a failed download) the result is
    empty, which callers treat as "do not tidy up".
    """
    if not multiple_lists_enabled:
        return {DEFAULT_SHOPPING_LIST_ID}
    return {shopping_list.id for shopping_list in lists}


def find_orphaned_items(items: Iterable[ShoppingListItem], valid_ids: Set[int]) -> List[ShoppingListItem]:
    return [item for item in items if item.shopping_list_id not in valid_ids]


class TidyUpPass:
    """Deletes orphaned items server-side, one operation per item"""

    def __init__(self, delete_item: Callable[[int], None], executor: Executor):
        """
        Args:
            delete_item: Server-side delete for a shopping list item id
            executor: Executor for the deletion queue
        """
        self._delete_item = delete_item
        self._executor = executor

    def prepare(self, items: Iterable[ShoppingListItem], lists: Iterable[ShoppingList],
                multiple_lists_enabled: bool,
                on_finished: Callable[[bool], None]) -> Optional[DownloadQueue]:
        """
        Build the deletion queue without starting it

        on_finished(True) is called once the queue settles, also when a
        deletion failed, so the caller re-validates against the server.

        Returns:
            The queue, or None when there is nothing to delete
        """
        valid_ids = valid_list_ids(lists, multiple_lists_enabled)
        if not valid_ids:
            logger.debug("No shopping lists known, skipping tidy-up")
            return None

        orphans = find_orphaned_items(items, valid_ids)
        if not orphans:
            return None

        def on_error(error: BaseException) -> None:
            logger.warning(f"Tidy-up deletion failed: {error}")
            on_finished(True)

        queue = DownloadQueue(self._executor, lambda: on_finished(True), on_error, name="tidy-up")
        for item in orphans:
            logger.info(f"Tidy-up: deleting item {item.id} of missing list {item.shopping_list_id}")
            queue.append(Operation(f"delete item {item.id}", partial(self._delete_item, item.id)))
        return queue

    def run(self, items: Iterable[ShoppingListItem], lists: Iterable[ShoppingList],
            multiple_lists_enabled: bool,
            on_finished: Callable[[bool], None]) -> Optional[DownloadQueue]:
        """
        Start the pass; on_finished(items_changed) reports whether any
        deletion was attempted (False right away when there were no orphans)
        """
        queue = self.prepare(items, lists, multiple_lists_enabled, on_finished)
        if queue is None:
            on_finished(False)
            return None
        queue.start()
        return queue
