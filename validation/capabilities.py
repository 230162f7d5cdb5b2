import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, TypeVar

from config import settings
from .errors import CapabilityUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

_executors: Dict[str, ThreadPoolExecutor] = {}
_executors_lock = threading.Lock()


def capability_executor(capability: str) -> ThreadPoolExecutor:
    """
    Long-lived worker pool for one capability, created on first use.
    A call that overruns its time box keeps one worker busy until the
    library returns; the pool bound caps how many such threads can pile up,
    and the interpreter waits for them at exit.
    """
    with _executors_lock:
        executor = _executors.get(capability)
        if executor is None:
            executor = ThreadPoolExecutor(
                max_workers=settings.CAPABILITY_MAX_WORKERS,
                thread_name_prefix=f"cap-{capability}",
            )
            _executors[capability] = executor
        return executor


def call_with_timeout(capability: str, fn: Callable[..., T], *args: Any, timeout: float, **kwargs: Any) -> T:
    """
    Run one external capability call under a time box.
    Timeouts and errors surface as CapabilityUnavailable. The time box
    includes any wait for a free worker of that capability.
    """
    future = capability_executor(capability).submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        logger.warning("%s timed out after %.1fs", capability, timeout)
        raise CapabilityUnavailable(capability, f"timeout after {timeout}s")
    except CapabilityUnavailable:
        raise
    except Exception as e:
        logger.warning("%s failed: %s", capability, e)
        raise CapabilityUnavailable(capability, str(e)) from e
