"""
schemas.py

Defines the function-calling tools exposed to the restaurant AI waiter, in the
flat realtime form ``{"type": "function", "name", "description", "parameters"}``.

Tools:
- add_to_cart
- call_chef
"""

from __future__ import annotations

from typing import Any, Dict

add_to_cart_schema: Dict[str, Any] = {
    "type": "function",
    "name": "add_to_cart",
    "description": (
        "Add a menu item to the customer's cart. Use the exact item name as it "
        "appears on the menu. "
        "Returns: {success: bool, message: str, cart_summary?: str, cart_total?: str, "
        "cart_item_count?: int, suggestions?: [str]}."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "item_name": {
                "type": "string",
                "description": "Exact name of the menu item.",
            },
            "quantity": {
                "type": "integer",
                "description": "Number of portions to add.",
                "default": 1,
            },
            "special_instructions": {
                "type": "string",
                "description": "Customer note for the kitchen (e.g., no onions).",
            },
        },
        "required": ["item_name"],
    },
}

call_chef_schema: Dict[str, Any] = {
    "type": "function",
    "name": "call_chef",
    "description": (
        "Send the customer's question to the kitchen when the menu does not answer "
        "it (ingredients, preparation, allergies). "
        "Returns: {success: bool, message: str, system_instruction: str}."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "question": {
                "type": "string",
                "description": "The customer's question, in their words.",
            },
        },
        "required": ["question"],
    },
}
