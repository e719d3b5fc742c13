"""
Test suite for ShoppingListRepository

Tests the local cache including:
- Schema creation and snapshot round trips
- Replacement of downloaded types only
- Diffing pending local changes against server records
"""

from grocy_sync.models import (
    NOT_PENDING,
    MissingItem,
    Product,
    ShoppingList,
    ShoppingListItem,
)
from grocy_sync.repository import ShoppingListRepository


def server_items():
    return [
        ShoppingListItem(1, 1, product_id=10, amount=2.0, qu_id=3),
        ShoppingListItem(2, 1, note="Candles", done=1),
        ShoppingListItem(3, 2, product_id=11),
    ]


def test_database_initialization(repository):
    assert repository.db_path.exists()

    stats = repository.get_statistics()
    assert stats["shopping_list_items"] == 0
    assert stats["pending_mutations"] == 0
    assert repository.load_snapshot().items == ()


def test_persist_and_load_snapshot(repository):
    repository.persist_snapshot(
        items=server_items(),
        lists=[ShoppingList(1, "Groceries", "Friday"), ShoppingList(2, "Hardware")],
        products=[Product(10, "Milk", product_group_id=5), Product(11, "Nails")],
        missing_items=[MissingItem(10, "Milk", 1.5, is_partly_in_stock=True)],
    )

    snapshot = repository.load_snapshot()
    assert snapshot.items == tuple(server_items())
    assert snapshot.lists[0].description == "Friday"
    assert snapshot.products[0].product_group_id == 5
    assert snapshot.missing_items == (MissingItem(10, "Milk", 1.5, True),)


def test_types_not_downloaded_are_kept(repository):
    repository.persist_snapshot(items=server_items(), lists=[ShoppingList(1, "Groceries")])

    repository.persist_snapshot(products=[Product(10, "Milk")])

    snapshot = repository.load_snapshot()
    assert len(snapshot.items) == 3
    assert snapshot.lists == (ShoppingList(1, "Groceries"),)
    assert snapshot.products == (Product(10, "Milk"),)


def test_downloaded_type_is_replaced_wholesale(repository):
    repository.persist_snapshot(lists=[ShoppingList(1, "Groceries"), ShoppingList(2, "Hardware")])

    repository.persist_snapshot(lists=[ShoppingList(2, "Hardware")])

    assert repository.load_snapshot().lists == (ShoppingList(2, "Hardware"),)


def test_pending_mutation_survives_download_and_is_returned(repository):
    repository.persist_snapshot(items=server_items())
    repository.upsert_items(server_items()[0].toggled())

    to_sync, by_id = repository.persist_snapshot(items=server_items())

    assert [(i.id, i.done, i.done_synced) for i in to_sync] == [(1, 1, 0)]
    assert by_id[1] == server_items()[0]
    stored = repository.pending_mutations()
    assert [(i.id, i.done) for i in stored] == [(1, 1)]


def test_pending_mutation_takes_server_fields(repository):
    repository.persist_snapshot(items=server_items())
    repository.upsert_items(server_items()[0].toggled())

    updated = server_items()
    updated[0] = ShoppingListItem(1, 1, product_id=10, amount=5.0, qu_id=3)
    repository.persist_snapshot(items=updated)

    stored = repository.pending_mutations()[0]
    assert stored.amount == 5.0
    assert stored.done == 1


def test_pending_mutation_matching_server_is_cleared(repository):
    repository.persist_snapshot(items=server_items())
    repository.upsert_items(server_items()[0].toggled())

    updated = server_items()
    updated[0] = ShoppingListItem(1, 1, product_id=10, amount=2.0, qu_id=3, done=1)
    to_sync, _ = repository.persist_snapshot(items=updated)

    assert to_sync == []
    assert repository.pending_mutations() == []


def test_pending_mutation_of_deleted_record_is_dropped(repository):
    repository.persist_snapshot(items=server_items())
    repository.upsert_items(server_items()[1].toggled())

    to_sync, _ = repository.persist_snapshot(items=[server_items()[0], server_items()[2]])

    assert to_sync == []
    assert repository.pending_mutations() == []
    assert [i.id for i in repository.load_snapshot().items] == [1, 3]


def test_persist_without_items_diffs_against_cache(repository):
    repository.persist_snapshot(items=server_items())
    repository.upsert_items(server_items()[0].toggled())

    to_sync, by_id = repository.persist_snapshot(lists=[ShoppingList(1, "Groceries")])

    assert [i.id for i in to_sync] == [1]
    assert by_id[1].done == 0
    assert by_id[1].done_synced == NOT_PENDING


def test_diff_cached_clears_changes_toggled_back(repository):
    repository.persist_snapshot(items=server_items())
    repository.upsert_items(server_items()[0].toggled().toggled())

    to_sync, _ = repository.diff_cached()

    assert to_sync == []
    assert repository.pending_mutations() == []


def test_delete_item(repository):
    repository.persist_snapshot(items=server_items())

    repository.delete_item(2)

    assert [i.id for i in repository.load_snapshot().items] == [1, 3]


def test_reopen_keeps_cache(db_path):
    with ShoppingListRepository(db_path) as repo:
        repo.persist_snapshot(items=server_items())
        repo.upsert_items(server_items()[2].toggled())

    with ShoppingListRepository(db_path) as repo:
        assert len(repo.load_snapshot().items) == 3
        assert repo.get_statistics()["pending_mutations"] == 1
