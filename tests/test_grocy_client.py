"""Tests for GrocyClient request handling and record parsing"""

from unittest.mock import Mock

import pytest
import requests

from grocy_sync.exceptions import NetworkError
from grocy_sync.grocy_client import GrocyClient
from grocy_sync.models import EntityType, MissingItem, ShoppingListItem


def make_response(payload=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.content = b"{}" if payload is not None else b""
    response.text = str(payload)
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
    return response


def make_client(*responses):
    session = Mock()
    session.headers = {}
    session.request.side_effect = list(responses)
    client = GrocyClient("https://grocy.example.com/", "secret-key", timeout=5, session=session)
    return client, session


def test_session_carries_api_key():
    client, session = make_client()

    assert client.base_url == "https://grocy.example.com/api"
    assert session.headers["GROCY-API-KEY"] == "secret-key"
    assert session.verify is True


def test_get_db_changed_time():
    client, session = make_client(make_response({"changed_time": "2024-03-01 10:00:00"}))

    assert client.get_db_changed_time() == "2024-03-01 10:00:00"
    session.request.assert_called_once_with(
        "GET", "https://grocy.example.com/api/system/db-changed-time", json=None, timeout=5
    )


def test_missing_changed_time_is_an_error():
    client, _ = make_client(make_response({}))

    with pytest.raises(NetworkError):
        client.get_db_changed_time()


def test_http_error_carries_status_code():
    client, _ = make_client(make_response({"error_message": "nope"}, status_code=401))

    with pytest.raises(NetworkError) as exc_info:
        client.get_shopping_lists()
    assert exc_info.value.status_code == 401


def test_connection_error_has_no_status_code():
    client, session = make_client()
    session.request.side_effect = requests.exceptions.ConnectionError("refused")

    with pytest.raises(NetworkError) as exc_info:
        client.get_db_changed_time()
    assert exc_info.value.status_code is None


def test_shopping_list_items_parsed_and_malformed_skipped():
    client, _ = make_client(make_response([
        {"id": "1", "shopping_list_id": "2", "product_id": "5", "amount": "3", "done": "1"},
        {"id": 2, "note": "Candles", "product_id": None, "done": 0},
        {"shopping_list_id": 1},
        {"id": "x"},
    ]))

    items = client.get_shopping_list_items()

    assert items == (
        ShoppingListItem(1, 2, product_id=5, amount=3.0, done=1),
        ShoppingListItem(2, 1, note="Candles"),
    )


def test_missing_items_from_volatile_stock():
    client, session = make_client(make_response({
        "missing_products": [
            {"id": "7", "name": "Milk", "amount_missing": "2", "is_partly_in_stock": "1"},
        ],
        "expiring_products": [],
    }))

    assert client.get_missing_items() == (MissingItem(7, "Milk", 2.0, True),)
    assert session.request.call_args[0][1].endswith("/stock/volatile")


def test_fetcher_for_every_entity_type():
    client, _ = make_client()

    for entity_type in EntityType:
        assert callable(client.fetcher_for(entity_type))


def test_edit_item_sends_partial_update():
    client, session = make_client(make_response(status_code=204))

    client.edit_shopping_list_item(4, {"done": 1})

    session.request.assert_called_once_with(
        "PUT", "https://grocy.example.com/api/objects/shopping_list/4",
        json={"done": 1}, timeout=5,
    )


def test_create_object_returns_id():
    client, _ = make_client(make_response({"created_object_id": "12"}))

    assert client.create_object("shopping_lists", {"name": "Party"}) == 12


def test_list_actions():
    client, session = make_client(make_response(status_code=204), make_response(status_code=204))

    client.add_missing_products(2)
    client.clear_shopping_list(3)

    calls = session.request.call_args_list
    assert calls[0][0][1].endswith("/stock/shoppinglist/add-missing-products")
    assert calls[0][1]["json"] == {"list_id": 2}
    assert calls[1][0][1].endswith("/stock/shoppinglist/clear")
    assert calls[1][1]["json"] == {"list_id": 3}
