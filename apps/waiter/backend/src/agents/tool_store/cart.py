"""
Menu resolution and the in-session cart.

Resolution is exact and case-insensitive; there is no fuzzy matching. The
cart exists only so the AI can read back a running summary and total.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from apps.waiter.backend.src.sessions.session_bootstrap import MenuItem
from src.exceptions import ToolResolutionMiss


def resolve_menu_item(menu: Iterable[MenuItem], item_name: Optional[str]) -> MenuItem:
    """
    Return the menu item whose name equals ``item_name`` ignoring case.

    :raises ToolResolutionMiss: When no item matches exactly.
    """
    wanted = (item_name or "").strip().lower()
    if wanted:
        for item in menu:
            if item.name.lower() == wanted:
                return item
    raise ToolResolutionMiss(item_name or "")


def suggest_menu_items(
    menu: Iterable[MenuItem], item_name: Optional[str], limit: int = 3
) -> List[str]:
    """Names the AI may offer instead; never used to add anything."""
    wanted = (item_name or "").strip().lower()
    if not wanted:
        return []
    names = []
    for item in menu:
        name = item.name.lower()
        first_word = name.split(" ")[0] if name else ""
        if wanted in name or (first_word and first_word in wanted):
            names.append(item.name)
        if len(names) >= limit:
            break
    return names


@dataclass
class CartLine:
    item_id: str
    name: str
    unit_price: Decimal
    quantity: int
    note: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class SessionCart:
    """Running cart of one relay session. Lines merge by menu item id."""

    def __init__(self):
        self._lines: Dict[str, CartLine] = {}

    def add(self, item: MenuItem, quantity: int, note: Optional[str] = None) -> CartLine:
        line = self._lines.get(item.id)
        if line is None:
            line = CartLine(
                item_id=item.id,
                name=item.name,
                unit_price=item.unit_price,
                quantity=quantity,
                note=note or None,
            )
            self._lines[item.id] = line
        else:
            line.quantity += quantity
            if note:
                line.note = note
        return line

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    @property
    def total(self) -> Decimal:
        return sum((line.line_total for line in self._lines.values()), Decimal("0"))

    def summary(self) -> str:
        return ", ".join(
            f"{line.quantity}x {line.name} (${line.line_total:.2f})"
            for line in self._lines.values()
        )

    def clear(self) -> None:
        self._lines.clear()
