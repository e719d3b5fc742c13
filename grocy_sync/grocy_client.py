"""Grocy REST API client: change-timestamp oracle and per-entity fetchers"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import requests

from .exceptions import MalformedServerRecord, NetworkError
from .models import (
    EntityType,
    MissingItem,
    Product,
    ProductGroup,
    QuantityUnit,
    ShoppingList,
    ShoppingListItem,
)

logger = logging.getLogger(__name__)


class GrocyClient:
    """Client for the Grocy server API authenticated with an API key"""

    # Grocy object entity names used in /objects/{entity}
    ENTITY_SHOPPING_LIST_ITEMS = "shopping_list"
    ENTITY_SHOPPING_LISTS = "shopping_lists"
    ENTITY_PRODUCT_GROUPS = "product_groups"
    ENTITY_QUANTITY_UNITS = "quantity_units"
    ENTITY_PRODUCTS = "products"

    def __init__(self, server_url: str, api_key: str, timeout: float = 10.0,
                 verify_ssl: bool = True, session: Optional[requests.Session] = None):
        """
        Initialize Grocy client

        Args:
            server_url: Base URL of the Grocy server (e.g. "https://grocy.local")
            api_key: Grocy API key
            timeout: Request timeout in seconds
            verify_ssl: Verify TLS certificates
            session: Optional preconfigured requests session
        """
        self.base_url = server_url.rstrip("/") + "/api"
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.verify = verify_ssl
        self._session.headers.update({
            "Accept": "application/json",
            "GROCY-API-KEY": api_key,
        })

    def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make authenticated request to the Grocy API

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint (e.g. "/objects/shopping_list")
            data: Optional JSON payload

        Returns:
            Parsed JSON response, or None for empty (204) responses

        Raises:
            NetworkError: If the server is unreachable or answers with an error
        """
        url = f"{self.base_url}{endpoint}"

        try:
            response = self._session.request(method, url, json=data, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.error(f"HTTP error {status} for {method} {endpoint}")
            if e.response is not None and e.response.text:
                logger.debug(f"Response: {e.response.text}")
            raise NetworkError(f"{method} {endpoint} failed with status {status}",
                               status_code=status) from e
        except requests.exceptions.RequestException as e:
            logger.warning(f"Request {method} {endpoint} failed: {e}")
            raise NetworkError(f"{method} {endpoint} failed: {e}") from e

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"{method} {endpoint} returned invalid JSON") from e

    # Change-timestamp oracle

    def get_db_changed_time(self) -> str:
        """
        Get the server's global "database last changed" timestamp

        Returns:
            Opaque timestamp string, only ever compared for equality
        """
        result = self._make_request("GET", "/system/db-changed-time")
        changed_time = (result or {}).get("changed_time")
        if not changed_time:
            raise NetworkError("Server returned no changed_time")
        logger.debug(f"Server db changed time: {changed_time}")
        return str(changed_time)

    # Generic object endpoints

    def get_objects(self, entity: str) -> List[Dict[str, Any]]:
        result = self._make_request("GET", f"/objects/{entity}")
        return result or []

    def create_object(self, entity: str, fields: Dict[str, Any]) -> Optional[int]:
        """Create a record and return its new id when the server reports one"""
        result = self._make_request("POST", f"/objects/{entity}", fields)
        created_id = (result or {}).get("created_object_id")
        return int(created_id) if created_id is not None else None

    def edit_object(self, entity: str, object_id: int, fields: Dict[str, Any]) -> None:
        """Partial update of a single record"""
        self._make_request("PUT", f"/objects/{entity}/{object_id}", fields)

    def delete_object(self, entity: str, object_id: int) -> None:
        self._make_request("DELETE", f"/objects/{entity}/{object_id}")

    # Entity fetchers

    def _parse_records(self, raw_records: List[Dict[str, Any]], record_cls: Type) -> Tuple:
        records = []
        for raw in raw_records:
            try:
                records.append(record_cls.from_json(raw))
            except MalformedServerRecord as e:
                logger.warning(f"Skipping record: {e}")
        return tuple(records)

    def get_shopping_list_items(self) -> Tuple[ShoppingListItem, ...]:
        raw = self.get_objects(self.ENTITY_SHOPPING_LIST_ITEMS)
        items = self._parse_records(raw, ShoppingListItem)
        logger.info(f"Retrieved {len(items)} shopping list items")
        return items

    def get_shopping_lists(self) -> Tuple[ShoppingList, ...]:
        raw = self.get_objects(self.ENTITY_SHOPPING_LISTS)
        return self._parse_records(raw, ShoppingList)

    def get_product_groups(self) -> Tuple[ProductGroup, ...]:
        raw = self.get_objects(self.ENTITY_PRODUCT_GROUPS)
        return self._parse_records(raw, ProductGroup)

    def get_quantity_units(self) -> Tuple[QuantityUnit, ...]:
        raw = self.get_objects(self.ENTITY_QUANTITY_UNITS)
        return self._parse_records(raw, QuantityUnit)

    def get_products(self) -> Tuple[Product, ...]:
        raw = self.get_objects(self.ENTITY_PRODUCTS)
        return self._parse_records(raw, Product)

    def get_missing_items(self) -> Tuple[MissingItem, ...]:
        """Missing products from the volatile stock endpoint"""
        result = self._make_request("GET", "/stock/volatile") or {}
        return self._parse_records(result.get("missing_products", []), MissingItem)

    def fetcher_for(self, entity_type: EntityType) -> Callable[[], Tuple]:
        """Return the fetcher producing a full snapshot of one resource type"""
        fetchers = {
            EntityType.SHOPPING_LIST_ITEMS: self.get_shopping_list_items,
            EntityType.SHOPPING_LISTS: self.get_shopping_lists,
            EntityType.PRODUCT_GROUPS: self.get_product_groups,
            EntityType.QUANTITY_UNITS: self.get_quantity_units,
            EntityType.PRODUCTS: self.get_products,
            EntityType.MISSING_ITEMS: self.get_missing_items,
        }
        return fetchers[entity_type]

    # Shopping list writes

    def edit_shopping_list_item(self, item_id: int, fields: Dict[str, Any]) -> None:
        self.edit_object(self.ENTITY_SHOPPING_LIST_ITEMS, item_id, fields)

    def delete_shopping_list_item(self, item_id: int) -> None:
        self.delete_object(self.ENTITY_SHOPPING_LIST_ITEMS, item_id)

    def add_missing_products(self, list_id: int) -> None:
        """Put every product below its minimum stock on the given list"""
        self._make_request("POST", "/stock/shoppinglist/add-missing-products",
                           {"list_id": list_id})

    def clear_shopping_list(self, list_id: int) -> None:
        self._make_request("POST", "/stock/shoppinglist/clear", {"list_id": list_id})
