"""
Shopping list sync orchestrator

Keeps the local cache consistent with the Grocy server:

- Asks the server for its global change timestamp and downloads only the
  resource types whose last-synced timestamp differs
- Persists downloaded snapshots and pushes pending local done/undone changes
- Deletes items whose shopping list no longer exists
- Publishes an immutable, filtered and grouped view after each settle point
"""

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from .download_queue import DownloadQueue, Operation
from .exceptions import NetworkError, PartialSyncFailure
from .filtering import FilterState, filter_items, group_items
from .grocy_client import GrocyClient
from .models import (
    DEFAULT_SHOPPING_LIST_ID,
    EntityType,
    QuantityUnit,
    ShoppingList,
    ShoppingListItem,
    ShoppingListView,
    Snapshot,
    SyncState,
)
from .preferences import (
    FEATURE_MULTIPLE_SHOPPING_LISTS,
    SHOPPING_LIST_LAST_ID,
    PreferenceStore,
)
from .repository import ShoppingListRepository, SyncDiff
from .tidy_up import TidyUpPass

logger = logging.getLogger(__name__)

MSG_NO_CONNECTION = "No connection to the server"
MSG_SYNCED = "Synced offline changes"
MSG_FAILED_TO_SYNC = "Failed to sync offline changes"
MSG_UNDEFINED_ERROR = "An undefined error occurred"

ViewListener = Callable[[ShoppingListView], None]
MessageListener = Callable[[str], None]


class ShoppingListSync:
    """
    Sync state machine for the shopping list screen

    All state changes run under one lock, so callbacks arriving from worker
    threads are serialized. Only the latest top-level queue may advance the
    cycle; results of superseded queues are ignored.
    """

    def __init__(
        self,
        client: GrocyClient,
        repository: ShoppingListRepository,
        preferences: PreferenceStore,
        executor: Optional[Executor] = None,
        multiple_lists: Optional[bool] = None,
        max_workers: int = 4,
    ):
        """
        Initialize the orchestrator

        Args:
            client: Grocy API client
            repository: Local cache
            preferences: Persisted preference store
            executor: Executor for network operations (default: own thread pool)
            multiple_lists: Feature flag value overriding the stored one
                (default: keep the stored value, enabled when none is stored)
            max_workers: Thread pool size when no executor is given
        """
        self.client = client
        self.repository = repository
        self.preferences = preferences

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="grocy-sync"
        )
        self._tidy_up = TidyUpPass(client.delete_shopping_list_item, self._executor)

        self._lock = threading.RLock()
        self._idle = threading.Event()
        self._idle.set()

        self._snapshot = Snapshot()
        self._data_loaded = False
        self._state = SyncState.IDLE
        self._offline = False
        self._loading = False
        self._current_queue: Optional[DownloadQueue] = None
        self._extra_pass_available = True
        self._cycle_active = False
        self._intents_in_flight = 0
        self._resync_after_cycle = False
        self._last_push_failure: Optional[PartialSyncFailure] = None

        self._search: Optional[str] = None
        self._filter_state = FilterState.NOTHING
        self._view = ShoppingListView()
        self._view_listeners: List[ViewListener] = []
        self._message_listeners: List[MessageListener] = []

        if multiple_lists is not None and multiple_lists != self.is_multiple_lists_enabled():
            logger.info(f"Multiple shopping lists {'enabled' if multiple_lists else 'disabled'}")
            preferences.set_bool(FEATURE_MULTIPLE_SHOPPING_LISTS, multiple_lists)
            # Items of lists no longer valid are tidied up by the next sync
            preferences.set_last_synced(EntityType.SHOPPING_LIST_ITEMS, None)
        elif not preferences.has(FEATURE_MULTIPLE_SHOPPING_LISTS):
            preferences.set_bool(FEATURE_MULTIPLE_SHOPPING_LISTS, True)

        last_id = preferences.get_int(SHOPPING_LIST_LAST_ID, DEFAULT_SHOPPING_LIST_ID)
        if last_id != DEFAULT_SHOPPING_LIST_ID and not self.is_multiple_lists_enabled():
            preferences.set_int(SHOPPING_LIST_LAST_ID, DEFAULT_SHOPPING_LIST_ID)
            last_id = DEFAULT_SHOPPING_LIST_ID
        self._selected_list_id = last_id

    def close(self) -> None:
        """Abandon in-flight work and stop the owned thread pool"""
        with self._lock:
            self._cancel_current_queue()
            self._cycle_active = False
            self._update_idle()
        if self._owns_executor:
            self._executor.shutdown(wait=False)
        self.repository.close()
        self.preferences.close()

    # Published state

    @property
    def view(self) -> ShoppingListView:
        return self._view

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_offline(self) -> bool:
        return self._offline

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def last_push_failure(self) -> Optional[PartialSyncFailure]:
        """Failure of the latest push of pending changes, None once a push succeeded"""
        return self._last_push_failure

    def add_listener(self, listener: ViewListener) -> None:
        self._view_listeners.append(listener)

    def remove_listener(self, listener: ViewListener) -> None:
        self._view_listeners.remove(listener)

    def add_message_listener(self, listener: MessageListener) -> None:
        self._message_listeners.append(listener)

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the current cycle settled; False on timeout"""
        return self._idle.wait(timeout)

    def update_filtered_items(self) -> ShoppingListView:
        """Recompute the filtered, grouped view and publish it"""
        with self._lock:
            snapshot = self._snapshot
            result = filter_items(
                snapshot.items,
                self._selected_list_id,
                self._search,
                self._filter_state,
                snapshot.products,
                snapshot.missing_items,
            )
            selected_list = self.get_selected_shopping_list()
            view = ShoppingListView(
                rows=group_items(result.items, snapshot.products, snapshot.groups),
                selected_list_id=self._selected_list_id,
                missing_count=result.missing_count,
                undone_count=result.undone_count,
                is_offline=self._offline,
                is_loading=self._loading,
                state=self._state,
                notes=selected_list.description if selected_list else None,
            )
            self._view = view
            for listener in list(self._view_listeners):
                listener(view)
            return view

    def _show_message(self, message: str) -> None:
        logger.info(f"Notice: {message}")
        for listener in list(self._message_listeners):
            listener(message)

    def _show_error_message(self) -> None:
        self._show_message(MSG_UNDEFINED_ERROR)

    def _set_state(self, state: SyncState) -> None:
        if state != self._state:
            logger.debug(f"Sync state {self._state.value} -> {state.value}")
            self._state = state

    # Queue plumbing

    def _new_queue(self, name: str, on_complete: Callable[[], None],
                   on_error: Callable[[BaseException], None],
                   supersedable: bool = True) -> DownloadQueue:
        """
        Create a queue whose callbacks run under the lock

        Callbacks of a supersedable queue only run while it is the current
        top-level queue.
        """
        queue = None

        def run(fn: Callable, *args: Any) -> None:
            if supersedable:
                self._run_if_current(queue, fn, *args)
            else:
                self._finish_intent(fn, *args)

        queue = DownloadQueue(
            self._executor,
            lambda: run(on_complete),
            lambda error: run(on_error, error),
            name=name,
        )
        return queue

    def _run_if_current(self, queue: DownloadQueue, fn: Callable, *args: Any) -> None:
        with self._lock:
            if queue is not self._current_queue:
                logger.debug(f"Ignoring late result of superseded {queue!r}")
                return
            self._current_queue = None
            try:
                fn(*args)
            except Exception:
                logger.exception(f"Sync step {getattr(fn, '__name__', fn)} failed")
                self._show_error_message()
                self._settle()

    def _start_queue(self, queue: DownloadQueue) -> None:
        self._current_queue = queue
        queue.start()

    def _start_intent(self, queue: DownloadQueue) -> None:
        """Start a queue serving a user action; it never advances the sync cycle"""
        self._intents_in_flight += 1
        self._idle.clear()
        queue.start()

    def _finish_intent(self, fn: Callable, *args: Any) -> None:
        with self._lock:
            if self._cycle_active:
                # The running cycle may commit server data fetched before this
                # action; one more pass after it settles picks up the result.
                self._resync_after_cycle = True
            try:
                fn(*args)
            except Exception:
                logger.exception(f"Action {getattr(fn, '__name__', fn)} failed")
                self._show_error_message()
                self.update_filtered_items()
            finally:
                self._intents_in_flight -= 1
                self._update_idle()

    def _update_idle(self) -> None:
        if self._intents_in_flight == 0 and not self._cycle_active:
            self._idle.set()
        else:
            self._idle.clear()

    def _cancel_current_queue(self) -> None:
        if self._current_queue is not None:
            logger.info(f"Superseding in-flight {self._current_queue!r}")
            self._current_queue.reset(True)
            self._current_queue = None

    # Sync cycle

    def load_from_database(self, download_after_loading: bool = False) -> None:
        """Publish the cached snapshot, optionally followed by a sync"""
        with self._lock:
            self._snapshot = self.repository.load_snapshot()
            self._data_loaded = True
            self.update_filtered_items()
            if download_after_loading:
                self.download_data()

    def download_data(self, db_changed_time: Optional[str] = None) -> None:
        """
        Start a sync cycle, superseding one in flight

        Args:
            db_changed_time: Server change timestamp already known for this cycle
        """
        with self._lock:
            self._extra_pass_available = True
            self._resync_after_cycle = False
            self._start_cycle(db_changed_time)

    def refresh(self) -> None:
        self.download_data()

    def _start_cycle(self, db_changed_time: Optional[str] = None) -> None:
        self._cancel_current_queue()
        self._cycle_active = True
        self._idle.clear()
        self._loading = True

        if db_changed_time is not None:
            self._download(db_changed_time)
            return

        self._set_state(SyncState.CHECKING_TIMESTAMP)
        result: Dict[str, str] = {}
        queue = self._new_queue(
            "db-changed-time",
            lambda: self._download(result["changed_time"]),
            self._on_download_error,
        )
        queue.append(Operation(
            "get db changed time",
            self.client.get_db_changed_time,
            on_success=partial(result.__setitem__, "changed_time"),
        ))
        self._start_queue(queue)

    def stale_entity_types(self, db_changed_time: str) -> List[EntityType]:
        """Types whose cached snapshot was not fetched under db_changed_time"""
        return [
            entity_type for entity_type in EntityType
            if self.preferences.last_synced(entity_type) != db_changed_time
        ]

    def _download(self, db_changed_time: str) -> None:
        self._set_state(SyncState.DOWNLOADING)
        stale = self.stale_entity_types(db_changed_time)

        if not stale:
            logger.info("Cache is current, skipping download")
            self._offline = False
            if self.repository.pending_mutations():
                self._set_state(SyncState.RECONCILING)
                diff = self.repository.diff_cached()
                self._snapshot = self.repository.load_snapshot()
                self._reconcile(diff)
            else:
                self._settle()
            return

        logger.info(f"Downloading {', '.join(t.value for t in stale)}")
        fetched: Dict[EntityType, tuple] = {}
        queue = self._new_queue(
            "download",
            lambda: self._on_queue_empty(db_changed_time, fetched),
            self._on_download_error,
        )
        for entity_type in stale:
            queue.append(Operation(
                f"fetch {entity_type.value}",
                self.client.fetcher_for(entity_type),
                on_success=partial(fetched.__setitem__, entity_type),
            ))
        self._start_queue(queue)

    def _on_download_error(self, error: BaseException) -> None:
        logger.warning(f"Sync cycle failed, going offline: {error}")
        self._show_message(MSG_NO_CONNECTION)
        self._offline = True
        self._loading = False
        self._set_state(SyncState.OFFLINE)
        self.update_filtered_items()
        self._cycle_active = False
        self._update_idle()

    def _on_queue_empty(self, db_changed_time: str, fetched: Dict[EntityType, tuple]) -> None:
        self._offline = False
        self._set_state(SyncState.RECONCILING)

        diff = self.repository.persist_snapshot(
            items=fetched.get(EntityType.SHOPPING_LIST_ITEMS),
            lists=fetched.get(EntityType.SHOPPING_LISTS),
            groups=fetched.get(EntityType.PRODUCT_GROUPS),
            units=fetched.get(EntityType.QUANTITY_UNITS),
            products=fetched.get(EntityType.PRODUCTS),
            missing_items=fetched.get(EntityType.MISSING_ITEMS),
        )
        # The timestamp read at cycle start is committed; a server change
        # during the download shows up as a new timestamp next cycle.
        for entity_type in fetched:
            self.preferences.set_last_synced(entity_type, db_changed_time)

        self._snapshot = self.repository.load_snapshot()
        self._data_loaded = True
        self._reconcile(diff)

    def _reconcile(self, diff: SyncDiff) -> None:
        to_sync, server_items = diff
        if not to_sync:
            self._tidy_up_items()
            return

        self._set_state(SyncState.PUSHING_MUTATIONS)
        logger.info(f"Pushing {len(to_sync)} pending change(s)")
        queue = self._new_queue(
            "push",
            lambda: self._on_push_complete(to_sync, server_items),
            partial(self._on_push_error, to_sync),
        )
        for item in to_sync:
            queue.append(Operation(
                f"push item {item.id}",
                partial(self.client.edit_shopping_list_item, item.id, {"done": item.done}),
            ))
        self._start_queue(queue)

    def _on_push_complete(self, to_sync: List[ShoppingListItem],
                          server_items: Dict[int, ShoppingListItem]) -> None:
        merged = []
        for item in to_sync:
            server_item = server_items.get(item.id, item)
            merged.append(server_item.with_confirmed_done(item.done))
        self.repository.upsert_items(*merged)
        self._snapshot = self.repository.load_snapshot()
        self._last_push_failure = None
        self._show_message(MSG_SYNCED)
        self._tidy_up_items()

    def _on_push_error(self, to_sync: List[ShoppingListItem], error: BaseException) -> None:
        self._last_push_failure = PartialSyncFailure(
            f"Push of {len(to_sync)} change(s) failed", cause=error
        )
        logger.warning(f"{self._last_push_failure}: {error}")
        self._show_message(MSG_FAILED_TO_SYNC)
        if self._extra_pass_available:
            self._extra_pass_available = False
            self._start_cycle()
        else:
            self._settle()

    def _tidy_up_items(self) -> None:
        self._set_state(SyncState.TIDYING_UP)
        queue = None

        def on_finished(items_changed: bool) -> None:
            self._run_if_current(queue, self._on_tidy_up_finished, items_changed)

        queue = self._tidy_up.prepare(
            self._snapshot.items,
            self._snapshot.lists,
            self.is_multiple_lists_enabled(),
            on_finished,
        )
        if queue is None:
            self._on_tidy_up_finished(False)
            return
        self._start_queue(queue)

    def _on_tidy_up_finished(self, items_changed: bool) -> None:
        if items_changed and self._extra_pass_available:
            logger.info("Tidy-up deleted items, running one more sync pass")
            self._extra_pass_available = False
            self._start_cycle()
            return
        self._settle()

    def _settle(self) -> None:
        if self._resync_after_cycle:
            self._resync_after_cycle = False
            logger.info("Cache changed by an action during the sync cycle, running one more pass")
            self.preferences.set_last_synced(EntityType.SHOPPING_LIST_ITEMS, None)
            self._start_cycle()
            return

        self._set_state(SyncState.IDLE)
        self._loading = False
        self.update_filtered_items()
        self._cycle_active = False
        self._update_idle()

    # Selection, search and filter

    def is_multiple_lists_enabled(self) -> bool:
        return self.preferences.get_bool(FEATURE_MULTIPLE_SHOPPING_LISTS, True)

    @property
    def selected_shopping_list_id(self) -> int:
        return self._selected_list_id

    def select_shopping_list(self, shopping_list_id: int) -> None:
        with self._lock:
            if shopping_list_id == self._selected_list_id:
                return
            if shopping_list_id != DEFAULT_SHOPPING_LIST_ID and not self.is_multiple_lists_enabled():
                logger.warning(f"Multiple shopping lists disabled, not selecting {shopping_list_id}")
                return
            if self.get_shopping_list_from_id(shopping_list_id) is None:
                logger.warning(f"Cannot select unknown shopping list {shopping_list_id}")
                return
            self.preferences.set_int(SHOPPING_LIST_LAST_ID, shopping_list_id)
            self._selected_list_id = shopping_list_id
            self.update_filtered_items()

    @property
    def filter_state(self) -> FilterState:
        return self._filter_state

    def on_filter_changed(self, state: FilterState) -> None:
        with self._lock:
            self._filter_state = state
            self.update_filtered_items()

    def is_search_active(self) -> bool:
        return bool(self._search)

    def update_search_input(self, text: str) -> None:
        with self._lock:
            self._search = text.lower()
            self.update_filtered_items()

    def reset_search(self) -> None:
        with self._lock:
            self._search = None
            self.update_filtered_items()

    # Lookups

    def is_data_loaded(self) -> bool:
        return self._data_loaded

    @property
    def shopping_lists(self) -> tuple:
        return self._snapshot.lists

    @property
    def quantity_units(self) -> tuple:
        return self._snapshot.units

    def get_shopping_list_from_id(self, shopping_list_id: int) -> Optional[ShoppingList]:
        for shopping_list in self._snapshot.lists:
            if shopping_list.id == shopping_list_id:
                return shopping_list
        return None

    def get_selected_shopping_list(self) -> Optional[ShoppingList]:
        return self.get_shopping_list_from_id(self._selected_list_id)

    def get_quantity_unit_from_id(self, unit_id: int) -> Optional[QuantityUnit]:
        for unit in self._snapshot.units:
            if unit.id == unit_id:
                return unit
        return None

    def get_item_at_position(self, position: int) -> Optional[ShoppingListItem]:
        """Item at a row of the published view; None for headers or out of range"""
        rows = self._view.rows
        if position < 0 or position >= len(rows):
            return None
        row = rows[position]
        return row if isinstance(row, ShoppingListItem) else None

    def _find_item(self, item_id: int) -> Optional[ShoppingListItem]:
        for item in self._snapshot.items:
            if item.id == item_id:
                return item
        return None

    # Item intents

    def toggle_done_status(self, position: int) -> None:
        """Toggle the item at a row of the published view"""
        with self._lock:
            item = self.get_item_at_position(position)
            if item is None:
                logger.error(f"No item at position {position} of {len(self._view.rows)} rows")
                self._show_error_message()
                return
            self._toggle(item)

    def toggle_item(self, item_id: int) -> None:
        with self._lock:
            item = self._find_item(item_id)
            if item is None:
                logger.error(f"Unknown shopping list item {item_id}")
                self._show_error_message()
                return
            self._toggle(item)

    def _toggle(self, item: ShoppingListItem) -> None:
        toggled = item.toggled()

        if self._offline:
            logger.info(f"Offline, keeping change of item {item.id} for later sync")
            self._update_done_status(toggled)
            return

        queue = self._new_queue(
            "toggle",
            partial(self._on_toggle_confirmed, toggled),
            partial(self._on_toggle_error, toggled),
            supersedable=False,
        )
        queue.append(Operation(
            f"toggle item {item.id}",
            partial(self.client.edit_shopping_list_item, item.id, {"done": toggled.done}),
        ))
        self._start_intent(queue)

    def _on_toggle_confirmed(self, toggled: ShoppingListItem) -> None:
        if self._cycle_active:
            # Stays pending so reconciliation keeps it over an older server copy
            self._update_done_status(toggled)
        else:
            self._update_done_status(toggled.with_confirmed_done(toggled.done))

    def _on_toggle_error(self, toggled: ShoppingListItem, error: BaseException) -> None:
        if isinstance(error, NetworkError) and error.status_code is None:
            logger.warning(f"Server unreachable, keeping change of item {toggled.id} for later sync")
            self._offline = True
            self._show_message(MSG_NO_CONNECTION)
            self._update_done_status(toggled)
            return
        logger.error(f"Failed to toggle item {toggled.id}: {error}")
        self._show_error_message()

    def _update_done_status(self, item: ShoppingListItem) -> None:
        self.repository.upsert_items(item)
        self._snapshot = self.repository.load_snapshot()
        self.update_filtered_items()

    def delete_item(self, position: int) -> None:
        """Delete the item at a row of the published view"""
        with self._lock:
            item = self.get_item_at_position(position)
            if item is None:
                logger.error(f"No item at position {position} of {len(self._view.rows)} rows")
                self._show_error_message()
                return
            self.delete_item_by_id(item.id)

    def delete_item_by_id(self, item_id: int) -> None:
        def on_deleted() -> None:
            self.repository.delete_item(item_id)
            self._snapshot = self.repository.load_snapshot()
            self.update_filtered_items()

        def on_error(error: BaseException) -> None:
            logger.error(f"Failed to delete item {item_id}: {error}")
            self._show_error_message()

        with self._lock:
            queue = self._new_queue("delete item", on_deleted, on_error, supersedable=False)
            queue.append(Operation(
                f"delete item {item_id}",
                partial(self.client.delete_shopping_list_item, item_id),
            ))
            self._start_intent(queue)

    def clear_done_items(self, shopping_list_id: Optional[int] = None) -> None:
        """Delete every done item of a list (default: the selected one)"""
        with self._lock:
            list_id = self._selected_list_id if shopping_list_id is None else shopping_list_id
            shopping_list = self.get_shopping_list_from_id(list_id)
            list_name = shopping_list.name if shopping_list else str(list_id)

            def on_cleared() -> None:
                self._show_message(f"Cleared done items of {list_name}")
                self.download_data()

            def on_error(error: BaseException) -> None:
                logger.error(f"Failed to clear done items of {list_name}: {error}")
                self._show_error_message()
                self.download_data()

            queue = self._new_queue("clear done", on_cleared, on_error, supersedable=False)
            for item in self._snapshot.items:
                if item.shopping_list_id != list_id or item.done == 0:
                    continue
                queue.append(Operation(
                    f"delete item {item.id}",
                    partial(self.client.delete_shopping_list_item, item.id),
                ))
            if queue.is_empty():
                logger.info(f"No done items on {list_name}")
                return
            self._start_intent(queue)

    # List intents

    def _run_single(self, name: str, call: Callable[[], Any],
                    on_success: Callable[[], None],
                    on_error: Callable[[BaseException], None]) -> None:
        queue = self._new_queue(name, on_success, on_error, supersedable=False)
        queue.append(Operation(name, call))
        self._start_intent(queue)

    def add_missing_items(self) -> None:
        """Put all products below minimum stock on the selected list"""
        with self._lock:
            shopping_list = self.get_selected_shopping_list()
            if shopping_list is None:
                self._show_error_message()
                return

            def on_added() -> None:
                self._show_message(f"Added missing products to {shopping_list.name}")
                self.download_data()

            def on_error(error: BaseException) -> None:
                logger.error(f"Failed to add missing products to {shopping_list.name}: {error}")
                self._show_error_message()

            self._run_single(
                "add missing products",
                partial(self.client.add_missing_products, shopping_list.id),
                on_added,
                on_error,
            )

    def save_notes(self, notes: Optional[str]) -> None:
        """Store notes as the description of the selected list"""
        with self._lock:
            list_id = self._selected_list_id

            def on_saved() -> None:
                self.download_data()

            def on_error(error: BaseException) -> None:
                logger.error(f"Failed to save notes of list {list_id}: {error}")
                self._show_error_message()
                self.download_data()

            self._run_single(
                "save notes",
                partial(self.client.edit_object, GrocyClient.ENTITY_SHOPPING_LISTS,
                        list_id, {"description": notes or ""}),
                on_saved,
                on_error,
            )

    def clear_all_items(self, shopping_list: ShoppingList,
                        on_response: Optional[Callable[[], None]] = None) -> None:
        with self._lock:
            def on_cleared() -> None:
                if on_response is not None:
                    on_response()
                else:
                    self.download_data()

            def on_error(error: BaseException) -> None:
                logger.error(f"Failed to clear {shopping_list.name}: {error}")
                self._show_error_message()

            self._run_single(
                "clear shopping list",
                partial(self.client.clear_shopping_list, shopping_list.id),
                on_cleared,
                on_error,
            )

    def delete_shopping_list(self, shopping_list: ShoppingList) -> None:
        with self._lock:
            def on_deleted() -> None:
                self._show_message(f"Deleted shopping list {shopping_list.name}")
                remaining = tuple(sl for sl in self._snapshot.lists if sl.id != shopping_list.id)
                self._snapshot = self._snapshot.replace_entity(EntityType.SHOPPING_LISTS, remaining)
                if self._selected_list_id == shopping_list.id:
                    self.preferences.set_int(SHOPPING_LIST_LAST_ID, DEFAULT_SHOPPING_LIST_ID)
                    self._selected_list_id = DEFAULT_SHOPPING_LIST_ID
                tidy = self._tidy_up.prepare(
                    self._snapshot.items,
                    remaining,
                    self.is_multiple_lists_enabled(),
                    lambda items_changed: self._finish_intent(self.download_data),
                )
                if tidy is None:
                    self.download_data()
                else:
                    self._start_intent(tidy)

            def on_error(error: BaseException) -> None:
                logger.error(f"Failed to delete shopping list {shopping_list.name}: {error}")
                self._show_error_message()
                self.download_data()

            self._run_single(
                "delete shopping list",
                partial(self.client.delete_object, GrocyClient.ENTITY_SHOPPING_LISTS,
                        shopping_list.id),
                on_deleted,
                on_error,
            )

    def safe_delete_current_shopping_list(self) -> None:
        """Clear the selected list, then delete it"""
        with self._lock:
            shopping_list = self.get_selected_shopping_list()
            if shopping_list is None:
                self._show_error_message()
                return
            self.clear_all_items(shopping_list, lambda: self.delete_shopping_list(shopping_list))


def create_sync(config, config_dir) -> ShoppingListSync:
    """
    Build an orchestrator with its collaborators from configuration

    Args:
        config: GrocySyncConfig
        config_dir: Directory holding the cache database
    """
    db_path = str(config_dir / config.database_path)
    client = GrocyClient(
        config.server_url,
        config.api_key,
        timeout=config.request_timeout_seconds,
        verify_ssl=config.verify_ssl,
    )
    return ShoppingListSync(
        client,
        ShoppingListRepository(db_path),
        PreferenceStore(db_path),
        multiple_lists=config.multiple_shopping_lists,
        max_workers=config.max_workers,
    )
