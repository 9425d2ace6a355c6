import json
from typing import Any, Awaitable, Callable, Dict, List

from opentelemetry import trace

from apps.waiter.backend.src.agents.tool_store.schemas import (
    add_to_cart_schema,
    call_chef_schema,
)
from apps.waiter.backend.src.agents.tool_store.waiter_tools import (
    ToolContext,
    ToolOutcome,
    add_to_cart,
    call_chef,
)
from apps.waiter.backend.src.utils.tracing import mark_span_error
from src.enums.monitoring import SpanAttr
from utils.ml_logging import get_logger

log = get_logger("tool_store.tool_registry")
tracer = trace.get_tracer(__name__)

function_mapping: Dict[str, Callable[[ToolContext, Any], Awaitable[ToolOutcome]]] = {
    "add_to_cart": add_to_cart,
    "call_chef": call_chef,
}

available_tools: List[Dict[str, Any]] = [
    add_to_cart_schema,
    call_chef_schema,
]

TOOL_REGISTRY: dict[str, dict] = {t["name"]: t for t in available_tools}


async def execute_tool_call(ctx: ToolContext, name: str, arguments: str) -> ToolOutcome:
    """
    Decode ``arguments`` and run the executor registered for ``name``.

    Never raises: an unknown tool, undecodable arguments or an executor crash
    all produce a ``success: false`` outcome that is still sent upstream.
    """
    with tracer.start_as_current_span(
        f"tool.{name or 'unknown'}",
        attributes={SpanAttr.TOOL_NAME.value: name, SpanAttr.SESSION_ID.value: ctx.session_id},
    ) as span:
        executor = function_mapping.get(name)
        if executor is None:
            log.warning(f"Unknown function: {name}", extra={"session_id": ctx.session_id})
            outcome = ToolOutcome({"success": False, "message": f"Unknown function: {name}"})
        else:
            try:
                args = json.loads(arguments or "{}")
                if not isinstance(args, dict):
                    raise ValueError("tool arguments must be a JSON object")
                outcome = await executor(ctx, args)
            except Exception as e:
                log.error(
                    f"Tool {name} failed: {e}",
                    extra={"session_id": ctx.session_id},
                    exc_info=True,
                )
                mark_span_error(span, e)
                outcome = ToolOutcome({"success": False, "message": "Error processing request"})

        span.set_attribute(SpanAttr.TOOL_SUCCESS.value, outcome.success)
        return outcome
