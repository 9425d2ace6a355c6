"""
Session Bootstrap
=================

Turns a restaurant id plus customer/table identity into an immutable
``SessionConfiguration`` by consulting the restaurant directory.

Fails closed: an unknown restaurant, a restaurant without the AI waiter
enabled, or a directory failure all raise ``ConfigError`` and no session
configuration is produced.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from opentelemetry import trace

from apps.waiter.backend.src.services.restaurant_directory import RestaurantDirectory
from src.exceptions import ConfigError, RestaurantDirectoryError
from utils.ml_logging import get_logger

logger = get_logger(__name__)
tracer = trace.get_tracer(__name__)

_KNOWN_ITEM_FIELDS = {
    "id",
    "name",
    "price",
    "description",
    "dietaryFlags",
    "allergens",
    "available",
}


def _price_string(value: Any) -> str:
    """Normalise a stored price to a two-decimal string."""
    try:
        return f"{Decimal(str(value)):.2f}"
    except (InvalidOperation, ValueError):
        return "0.00"


_TRUE_STRINGS = {"true", "1", "yes", "y", "on"}
_FALSE_STRINGS = {"false", "0", "no", "n", "off", ""}


def _flag(value: Any, default: bool) -> bool:
    """
    Read a boolean store flag. Booleans and numbers are taken as-is, common
    true/false spellings are parsed, and anything else yields ``False``.
    """
    if value is None:
        return default
    if isinstance(value, (bool, int, float)):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    logger.warning(f"Unrecognised flag value {value!r}; treating as false")
    return False


def _str_tuple(value: Any) -> Tuple[str, ...]:
    """A single string is one tag, not a sequence of characters."""
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class MenuItem:
    """One menu entry as snapshotted at session start."""

    id: str
    name: str
    price: str
    description: str = ""
    dietary_flags: Tuple[str, ...] = ()
    allergens: Tuple[str, ...] = ()
    available: bool = True
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def unit_price(self) -> Decimal:
        return Decimal(self.price)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "MenuItem":
        """Build from a directory record in camelCase wire form."""
        extra = {k: v for k, v in record.items() if k not in _KNOWN_ITEM_FIELDS}
        return cls(
            id=str(record.get("id", "")),
            name=str(record.get("name", "")),
            price=_price_string(record.get("price", "0")),
            description=str(record.get("description") or ""),
            dietary_flags=_str_tuple(record.get("dietaryFlags")),
            allergens=_str_tuple(record.get("allergens")),
            available=_flag(record.get("available"), default=True),
            extra=MappingProxyType(extra),
        )

    def to_client_dict(self) -> Dict[str, Any]:
        """Full item in camelCase wire form, store-only fields included."""
        return {
            **dict(self.extra),
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "description": self.description,
            "dietaryFlags": list(self.dietary_flags),
            "allergens": list(self.allergens),
            "available": self.available,
        }


@dataclass(frozen=True)
class SessionConfiguration:
    """Everything the relay needs to configure one upstream conversation."""

    restaurant_id: str
    restaurant_name: str
    language: str = "en"
    menu: Tuple[MenuItem, ...] = ()
    customer_session_id: Optional[str] = None
    table_id: Optional[str] = None


class SessionBootstrap:
    """Resolves ``SessionConfiguration`` objects from a ``RestaurantDirectory``."""

    def __init__(self, directory: RestaurantDirectory):
        self._directory = directory

    async def resolve(
        self,
        restaurant_id: str,
        *,
        language: Optional[str] = None,
        customer_session_id: Optional[str] = None,
        table_id: Optional[str] = None,
        restaurant_name_hint: Optional[str] = None,
    ) -> SessionConfiguration:
        """
        Build the configuration for one session.

        Args:
            restaurant_id: Restaurant the customer is ordering from.
            language: Conversation language code; ``en`` when omitted.
            customer_session_id: Customer session the relay serves.
            table_id: Table the customer is seated at, if known.
            restaurant_name_hint: Name supplied by the client, used only when
                the directory record has none.

        Raises:
            ConfigError: Unknown restaurant, AI waiter disabled, or lookup failure.
        """
        with tracer.start_as_current_span(
            "session_bootstrap.resolve",
            attributes={"restaurant.id": restaurant_id},
        ):
            try:
                restaurant = await self._directory.get_restaurant(restaurant_id)
                if restaurant is None:
                    raise ConfigError("Restaurant not found")
                if not _flag(restaurant.get("aiWaiterEnabled"), default=False):
                    raise ConfigError("AI Waiter is not enabled for this restaurant")
                records = await self._directory.get_menu_items(restaurant_id)
            except RestaurantDirectoryError as e:
                logger.error(
                    f"Restaurant lookup failed: {e}",
                    extra={"restaurant_id": restaurant_id},
                )
                raise ConfigError("Restaurant lookup failed") from e

            menu = tuple(
                item
                for item in (MenuItem.from_record(r) for r in records)
                if item.available
            )
            config = SessionConfiguration(
                restaurant_id=restaurant_id,
                restaurant_name=restaurant.get("name") or restaurant_name_hint or "",
                language=language or "en",
                menu=menu,
                customer_session_id=customer_session_id,
                table_id=table_id,
            )

        logger.info(
            f"Session configuration resolved: {config.restaurant_name!r}, "
            f"{len(menu)} available items, language={config.language}",
            extra={"restaurant_id": restaurant_id},
        )
        return config
