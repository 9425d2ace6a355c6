"""
Restaurant directory
====================

Read-only access to restaurant records and menus. Records use the camelCase
wire form of the restaurant API (``aiWaiterEnabled``, ``dietaryFlags``...).

Implementations:
- ``InMemoryRestaurantDirectory``: seeded programmatically or from YAML
- ``HttpRestaurantDirectory``: the restaurant CRUD API over ``httpx``
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import httpx
import yaml

from src.exceptions import RestaurantDirectoryError
from utils.ml_logging import get_logger

logger = get_logger(__name__)


class RestaurantDirectory(ABC):
    """Collaborator contract consumed by session bootstrap."""

    @abstractmethod
    async def get_restaurant(self, restaurant_id: str) -> Optional[Dict[str, Any]]:
        """Return the restaurant record, or ``None`` when it does not exist."""

    @abstractmethod
    async def get_menu_items(self, restaurant_id: str) -> List[Dict[str, Any]]:
        """Return every menu item of the restaurant, available or not."""

    async def aclose(self) -> None:
        return None


class InMemoryRestaurantDirectory(RestaurantDirectory):
    def __init__(self):
        self._restaurants: Dict[str, Dict[str, Any]] = {}
        self._menus: Dict[str, List[Dict[str, Any]]] = {}

    def add_restaurant(
        self,
        restaurant_id: str,
        name: str,
        *,
        ai_waiter_enabled: bool = True,
        menu: Iterable[Dict[str, Any]] = (),
        **fields: Any,
    ) -> None:
        self._restaurants[restaurant_id] = {
            **fields,
            "id": restaurant_id,
            "name": name,
            "aiWaiterEnabled": ai_waiter_enabled,
        }
        self._menus[restaurant_id] = [dict(item) for item in menu]

    @classmethod
    def from_yaml(cls, path: str | Path) -> "InMemoryRestaurantDirectory":
        """
        Seed a directory from YAML of the form::

            restaurants:
              - id: R1
                name: Demo Diner
                aiWaiterEnabled: true
                menu:
                  - {id: m1, name: Burger, price: "9.99"}
        """
        p = Path(path).expanduser().resolve()
        if not p.exists():
            raise FileNotFoundError(f"Restaurant seed file not found: {p}")
        with p.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid seed YAML at {p} (expected mapping).")

        directory = cls()
        for entry in data.get("restaurants") or []:
            entry = dict(entry)
            restaurant_id = str(entry.pop("id"))
            directory.add_restaurant(
                restaurant_id,
                str(entry.pop("name", "")),
                ai_waiter_enabled=bool(entry.pop("aiWaiterEnabled", False)),
                menu=entry.pop("menu", None) or (),
                **entry,
            )
        logger.info(f"Seeded {len(directory._restaurants)} restaurants from {p}")
        return directory

    async def get_restaurant(self, restaurant_id: str) -> Optional[Dict[str, Any]]:
        record = self._restaurants.get(restaurant_id)
        return copy.deepcopy(record) if record is not None else None

    async def get_menu_items(self, restaurant_id: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._menus.get(restaurant_id, []))


class HttpRestaurantDirectory(RestaurantDirectory):
    """
    Restaurant directory backed by the restaurant CRUD API.

    ``GET {base}/api/restaurants/{id}`` and ``GET {base}/api/restaurants/{id}/menu``.
    A 404 on the restaurant maps to ``None``; transport errors and other
    non-2xx responses raise ``RestaurantDirectoryError``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout
        )

    async def _get_json(self, path: str) -> Optional[Any]:
        try:
            response = await self._client.get(path)
        except httpx.HTTPError as e:
            raise RestaurantDirectoryError(f"GET {path} failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.is_error:
            raise RestaurantDirectoryError(
                f"GET {path} returned HTTP {response.status_code}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise RestaurantDirectoryError(f"GET {path} returned invalid JSON") from e

    async def get_restaurant(self, restaurant_id: str) -> Optional[Dict[str, Any]]:
        data = await self._get_json(f"/api/restaurants/{restaurant_id}")
        if data is None:
            return None
        if not isinstance(data, dict):
            raise RestaurantDirectoryError("Restaurant record is not an object")
        return data

    async def get_menu_items(self, restaurant_id: str) -> List[Dict[str, Any]]:
        data = await self._get_json(f"/api/restaurants/{restaurant_id}/menu")
        if data is None:
            return []
        # The API returns either a bare list or {"items": [...]}
        if isinstance(data, dict):
            data = data.get("items") or []
        if not isinstance(data, list):
            raise RestaurantDirectoryError("Menu payload is not a list")
        return [item for item in data if isinstance(item, dict)]

    async def aclose(self) -> None:
        await self._client.aclose()
