import logging
from typing import Any, Callable, NoReturn, TypeVar

from fastapi import HTTPException
from fastapi.concurrency import run_in_threadpool

from virt_lifecycle.libvirt.errors import (
    AlreadyActiveError,
    DescriptorMismatchError,
    DescriptorParseError,
    DomainBusyError,
    DomainNotFoundError,
    HypervisorConnectionError,
    LifecycleError,
    NonConvergentStateError,
    WaitCancelledError,
    WaitTimeoutError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATUS_BY_ERROR = (
    (DomainNotFoundError, 404),
    (DescriptorParseError, 400),
    (DescriptorMismatchError, 409),
    (DomainBusyError, 409),
    (AlreadyActiveError, 409),
    (NonConvergentStateError, 409),
    (WaitTimeoutError, 504),
    (WaitCancelledError, 503),
    (HypervisorConnectionError, 503),
)


def raise_for_lifecycle_error(exc: LifecycleError) -> NoReturn:
    status = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status = code
            break
    if status >= 500:
        logger.error("Lifecycle step %s failed for %s: %s", exc.step, exc.name, exc)
    raise HTTPException(
        status_code=status,
        detail={"error": str(exc), "step": exc.step, "domain": exc.name},
    )


def call_registry_operation(operation: Callable[[], T], *, hypervisor: str) -> T:
    try:
        return operation()
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Hypervisor {hypervisor} not found")
    except LifecycleError as exc:
        raise_for_lifecycle_error(exc)


async def execute_lifecycle_task(
    registry,
    hypervisor: str,
    method: str,
    *args: Any,
    **kwargs: Any,
) -> Any:
    def _run():
        lifecycle = registry.lifecycle(hypervisor)
        return getattr(lifecycle, method)(*args, **kwargs)

    return await run_in_threadpool(
        lambda: call_registry_operation(_run, hypervisor=hypervisor)
    )


__all__ = [
    "logger",
    "T",
    "call_registry_operation",
    "execute_lifecycle_task",
    "raise_for_lifecycle_error",
]
