"""Optional OpenTelemetry tracing.

Nothing is traced until :func:`instrument` is called. Span names and
attributes follow the GenAI semantic conventions:

* ``invoke_agent mcphost`` wraps one user query and all of its turns,
* ``chat <model>`` wraps one streamed model turn,
* ``execute_tool <name>`` wraps one tool invocation.

``opentelemetry-api`` is an optional extra (``pip install mcphost[otel]``).
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "mcphost") -> None:
    """Start emitting spans through the global TracerProvider.

    Configure the TracerProvider (or run under ``opentelemetry-instrument``)
    before calling this.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "tracing needs opentelemetry-api: pip install mcphost[otel]"
        )
    from opentelemetry import trace

    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info("Tracing enabled but no TracerProvider is set; spans are dropped")
    else:
        logger.info(f"Tracing enabled with tracer {tracer_name}")


def uninstrument() -> None:
    global _tracer
    _tracer = None


@asynccontextmanager
async def _span(name: str, attributes: dict, client: bool = False):
    if _tracer is None:
        yield None
        return
    kwargs = {"attributes": {k: v for k, v in attributes.items() if v is not None}}
    if client:
        from opentelemetry.trace import SpanKind

        kwargs["kind"] = SpanKind.CLIENT
    with _tracer.start_as_current_span(name, **kwargs) as span:
        yield span


def session_span(query: str, model: str):
    """Span covering every turn spent answering *query*."""
    return _span("invoke_agent mcphost", {
        "gen_ai.operation.name": "invoke_agent",
        "gen_ai.agent.name": "mcphost",
        "gen_ai.request.model": model,
        "mcphost.query.length": len(query),
    })


def completion_span(system: str, model: str, turn: int | None = None):
    return _span(f"chat {model}", {
        "gen_ai.operation.name": "chat",
        "gen_ai.provider.name": system,
        "gen_ai.request.model": model,
        "mcphost.turn": turn,
    }, client=True)


def tool_span(tool_name: str, call_id: str, server: str | None = None):
    return _span(f"execute_tool {tool_name}", {
        "gen_ai.operation.name": "execute_tool",
        "gen_ai.tool.name": tool_name,
        "gen_ai.tool.call.id": call_id,
        "mcphost.tool.provider": server,
    })


_USAGE_ATTRIBUTES = (
    ("prompt_tokens", "gen_ai.usage.input_tokens"),
    ("completion_tokens", "gen_ai.usage.output_tokens"),
    ("total_tokens", "mcphost.usage.total_tokens"),
)


def record_usage(span, usage, response_model: str | None = None) -> None:
    """Copy the token counts of a turn onto its span."""
    if span is None:
        return
    if usage is not None:
        for field, attribute in _USAGE_ATTRIBUTES:
            value = getattr(usage, field, None)
            if value is not None:
                span.set_attribute(attribute, value)
    if response_model:
        span.set_attribute("gen_ai.response.model", response_model)


def record_error(span, exception: BaseException) -> None:
    """Mark *span* as failed. Does nothing while tracing is off."""
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.record_exception(exception)
    span.set_status(StatusCode.ERROR, str(exception))
    span.set_attribute("error.type", type(exception).__qualname__)
