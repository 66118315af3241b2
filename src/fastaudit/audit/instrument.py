"""
Explicit audit instrumentation.

Wrap an operation so its outcome is recorded as an audit event: a
success event with the call duration, or a failure event carrying the
exception class and message. The original exception is always re-raised.

Example:
    await audit_operation(
        manager,
        "delete_user",
        repo.delete,
        user_id,
        category="DATA",
        resource="user",
        resource_id=user_id,
    )

    @audited(manager, "export_report", category="BUSINESS", resource="report")
    async def export_report(report_id: str) -> bytes:
        ...
"""

import inspect
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from fastaudit.audit.manager import AuditManager

F = TypeVar("F", bound=Callable[..., Any])


def _outcome_fields(
    operation: str,
    event_fields: dict[str, Any],
    started: float,
    error: BaseException | None = None,
) -> dict[str, Any]:
    fields = dict(event_fields)
    fields.setdefault("event_type", operation.upper())
    fields["operation"] = operation

    metadata = dict(fields.get("metadata") or {})
    metadata["durationMs"] = round((time.perf_counter() - started) * 1000, 3)
    fields["metadata"] = metadata

    fields["success"] = error is None
    if error is not None:
        fields["error_code"] = type(error).__name__
        fields["error_message"] = str(error)
    return fields


async def audit_operation(
    manager: AuditManager,
    operation: str,
    action: Callable[..., Any],
    *args: Any,
    flush: bool = False,
    **event_fields: Any,
) -> Any:
    """
    Run ``action(*args)`` and audit its outcome.

    ``action`` may be a plain callable or a coroutine function. Extra
    keyword arguments become fields of the audit event.

    Args:
        manager: Manager that receives the event.
        operation: Operation name, also the default ``event_type`` (upper-cased).
        action: Callable to run.
        flush: Flush the manager after logging.

    Returns:
        Whatever ``action`` returned.
    """
    started = time.perf_counter()
    try:
        result = action(*args)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        await manager.log(**_outcome_fields(operation, event_fields, started, error=e))
        if flush:
            await manager.flush()
        raise

    await manager.log(**_outcome_fields(operation, event_fields, started))
    if flush:
        await manager.flush()
    return result


def audited(
    manager: AuditManager,
    operation: str | None = None,
    **event_fields: Any,
) -> Callable[[F], F]:
    """
    Decorator form of ``audit_operation``.

    Coroutine functions are audited with ``manager.log``; plain functions
    with ``manager.log_sync`` so they never block on store I/O. The
    operation name defaults to the function name.
    """

    def decorator(func: F) -> F:
        name = operation or func.__name__

        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                return await audit_operation(
                    manager,
                    name,
                    lambda: func(*args, **kwargs),
                    **event_fields,
                )

            return async_wrapper  # type: ignore[return-value]

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                manager.log_sync(**_outcome_fields(name, event_fields, started, error=e))
                raise
            manager.log_sync(**_outcome_fields(name, event_fields, started))
            return result

        return sync_wrapper  # type: ignore[return-value]

    return decorator
