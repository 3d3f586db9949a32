"""Invocation logging for public adapter, session and storage methods.

One decorator wraps each public method and dispatches invocation/completion
events to a set of concerns. Structured logging is the built-in concern;
callers can pass extra concerns (for example test probes) through the same
hook contract. A failing concern is logged and never breaks the wrapped call.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from inspect import signature
from time import perf_counter
from typing import Any, Callable, Mapping, Protocol, Sequence

from . import fields
from .context import log_context


@dataclass(frozen=True)
class InvocationContext:
    """Structured metadata describing one public API invocation."""

    component_id: str
    api_name: str
    references: Mapping[str, str]


@dataclass(frozen=True)
class CompletionContext:
    """Structured metadata describing one completed public API invocation."""

    invocation: InvocationContext
    success: bool
    duration_ms: float
    errors: list[str]


class PublicApiInstrumentationConcern(Protocol):
    """Hook contract for one public API instrumentation concern."""

    def on_invocation(self, context: InvocationContext) -> None:
        """Handle invocation-start event for one method call."""

    def on_completion(self, context: CompletionContext) -> None:
        """Handle completion event for one method call."""


class PublicApiLoggingConcern:
    """Logging concern emitting one record at invocation and one at completion."""

    def __init__(self, *, logger: Any) -> None:
        self._logger = logger

    def on_invocation(self, context: InvocationContext) -> None:
        with log_context(_invocation_log_context(context)):
            self._logger.debug("Public API invocation")

    def on_completion(self, context: CompletionContext) -> None:
        payload = _invocation_log_context(context.invocation)
        payload.update(
            {
                fields.EVENT: fields.PUBLIC_API_COMPLETION_EVENT,
                fields.SUCCESS: context.success,
                fields.DURATION_MS: context.duration_ms,
                fields.ERRORS: context.errors,
            }
        )
        with log_context(payload):
            if context.success:
                self._logger.info("Public API completion")
            else:
                self._logger.warning("Public API completion")


def public_api_logged(
    *,
    logger: Any,
    component_id: str,
    api_name: str | None = None,
    id_fields: tuple[str, ...] = (),
    concerns: Sequence[PublicApiInstrumentationConcern] = (),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorate one public method with invocation/completion logging.

    ``id_fields`` names the call arguments (keyword or positional) whose values
    are attached to both records as references.
    """
    resolved_concerns: tuple[PublicApiInstrumentationConcern, ...] = (
        PublicApiLoggingConcern(logger=logger),
        *concerns,
    )

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        method_name = api_name or func.__name__
        func_signature = signature(func)

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            invocation = InvocationContext(
                component_id=component_id,
                api_name=method_name,
                references=_references(func_signature, id_fields, args, kwargs),
            )
            _dispatch(
                concerns=resolved_concerns,
                stage="invocation",
                invocation=invocation,
                event=invocation,
                logger=logger,
            )

            started = perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                completion = CompletionContext(
                    invocation=invocation,
                    success=False,
                    duration_ms=round((perf_counter() - started) * 1000.0, 3),
                    errors=[f"{type(exc).__name__}: {exc}"],
                )
                _dispatch(
                    concerns=resolved_concerns,
                    stage="completion",
                    invocation=invocation,
                    event=completion,
                    logger=logger,
                )
                raise

            completion = CompletionContext(
                invocation=invocation,
                success=True,
                duration_ms=round((perf_counter() - started) * 1000.0, 3),
                errors=[],
            )
            _dispatch(
                concerns=resolved_concerns,
                stage="completion",
                invocation=invocation,
                event=completion,
                logger=logger,
            )
            return result

        return wrapper

    return decorator


def _references(
    func_signature: Any,
    id_fields: tuple[str, ...],
    args: tuple[Any, ...],
    kwargs: Mapping[str, Any],
) -> dict[str, str]:
    """Extract non-empty identity arguments for structured references."""
    if not id_fields:
        return {}
    try:
        bound = func_signature.bind_partial(*args, **kwargs).arguments
    except TypeError:
        bound = dict(kwargs)
    return {
        name: str(bound[name])
        for name in id_fields
        if bound.get(name) not in (None, "")
    }


def _invocation_log_context(context: InvocationContext) -> dict[str, object]:
    """Build common structured fields for one invocation event."""
    return {
        fields.EVENT: fields.PUBLIC_API_INVOCATION_EVENT,
        fields.COMPONENT_ID: context.component_id,
        fields.API_NAME: context.api_name,
        **context.references,
    }


def _dispatch(
    *,
    concerns: Sequence[PublicApiInstrumentationConcern],
    stage: str,
    invocation: InvocationContext,
    event: InvocationContext | CompletionContext,
    logger: Any,
) -> None:
    """Dispatch one event to every concern with failure isolation."""
    for concern in concerns:
        try:
            if isinstance(event, CompletionContext):
                concern.on_completion(event)
            else:
                concern.on_invocation(event)
        except Exception as exc:  # noqa: BLE001
            with log_context(
                {
                    fields.EVENT: fields.PUBLIC_API_INSTRUMENTATION_FAILURE_EVENT,
                    fields.COMPONENT_ID: invocation.component_id,
                    fields.API_NAME: invocation.api_name,
                    fields.STAGE: stage,
                    fields.CONCERN: type(concern).__name__,
                    fields.ERRORS: [f"{type(exc).__name__}: {exc}"],
                }
            ):
                logger.warning("Public API instrumentation concern failed")
