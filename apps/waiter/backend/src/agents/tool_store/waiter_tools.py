"""
Executors for the waiter tools.

Each executor receives a ``ToolContext`` plus the decoded arguments and returns
a ``ToolOutcome`` whose ``output`` is sent back upstream as the function call
result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, TypedDict

from apps.waiter.backend.src.agents.tool_store.cart import (
    SessionCart,
    resolve_menu_item,
    suggest_menu_items,
)
from apps.waiter.backend.src.sessions.session_bootstrap import SessionConfiguration
from apps.waiter.backend.src.ws_helpers import client_events
from src.exceptions import ToolResolutionMiss
from utils.ml_logging import get_logger

logger = get_logger("tool_store.waiter_tools")

CHEF_SYSTEM_INSTRUCTION = (
    "Inform the customer that you have sent their specific question to the chef "
    "and they will provide an answer shortly."
)


@dataclass
class ToolContext:
    """What an executor may touch: the session's config and cart, the client and staff."""

    session_id: str
    config: SessionConfiguration
    cart: SessionCart
    emit: Callable[[Dict[str, Any]], Awaitable[Any]]
    notify_staff: Callable[[str, Dict[str, Any]], Awaitable[Any]]


@dataclass
class ToolOutcome:
    output: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return bool(self.output.get("success"))


class AddToCartArgs(TypedDict, total=False):
    item_name: str
    quantity: int
    special_instructions: str


class CallChefArgs(TypedDict, total=False):
    question: str


def _coerce_quantity(value: Any) -> int:
    """Positive integer quantity; anything else becomes 1."""
    if isinstance(value, bool):
        return 1
    if isinstance(value, int):
        quantity = value
    elif isinstance(value, float) and value.is_integer():
        quantity = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        quantity = int(value.strip())
    else:
        return 1
    return quantity if quantity >= 1 else 1


def _note(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


async def add_to_cart(ctx: ToolContext, args: AddToCartArgs) -> ToolOutcome:
    """
    Add an exactly-named menu item to the cart and tell the client.

    A miss emits nothing to the client and returns suggestions for the AI.
    """
    item_name = args.get("item_name")
    try:
        item = resolve_menu_item(ctx.config.menu, item_name)
    except ToolResolutionMiss as miss:
        logger.warning(
            f"add_to_cart miss: {miss}",
            extra={"session_id": ctx.session_id, "restaurant_id": ctx.config.restaurant_id},
        )
        output: Dict[str, Any] = {
            "success": False,
            "message": f'Could not find "{item_name or ""}" on the menu',
        }
        suggestions = suggest_menu_items(ctx.config.menu, item_name)
        if suggestions:
            output["suggestions"] = suggestions
        return ToolOutcome(output)

    quantity = _coerce_quantity(args.get("quantity", 1))
    note = _note(args.get("special_instructions"))

    client_item = {**item.to_client_dict(), "quantity": quantity}
    if note:
        client_item["customerNote"] = note
    await ctx.emit(client_events.add_to_cart(client_item))

    ctx.cart.add(item, quantity, note)
    logger.info(
        f"Added {quantity}x {item.name} to cart (items={ctx.cart.item_count})",
        extra={"session_id": ctx.session_id, "restaurant_id": ctx.config.restaurant_id},
    )
    return ToolOutcome(
        {
            "success": True,
            "message": f"Added {quantity} {item.name} to cart",
            "cart_summary": ctx.cart.summary(),
            "cart_total": f"${ctx.cart.total:.2f}",
            "cart_item_count": ctx.cart.item_count,
        }
    )


async def call_chef(ctx: ToolContext, args: CallChefArgs) -> ToolOutcome:
    """Forward the customer's question to the kitchen dashboards."""
    question = args.get("question")
    if not isinstance(question, str) or not question.strip():
        question = "No specific question provided"

    await ctx.emit(client_events.chef_called(question))
    delivered = await ctx.notify_staff(
        ctx.config.restaurant_id,
        {
            "question": question,
            "restaurantId": ctx.config.restaurant_id,
            "customerSessionId": ctx.config.customer_session_id,
            "tableId": ctx.config.table_id,
            "sessionId": ctx.session_id,
            "askedAt": client_events.utc_timestamp(),
        },
    )
    logger.info(
        f"Chef question forwarded to {delivered} kitchen connection(s)",
        extra={"session_id": ctx.session_id, "restaurant_id": ctx.config.restaurant_id},
    )
    return ToolOutcome(
        {
            "success": True,
            "message": "Request sent to kitchen.",
            "system_instruction": CHEF_SYSTEM_INSTRUCTION,
        }
    )
