import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)


def _run_logged(name: str, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    try:
        task(*args, **kwargs)
    except Exception:
        logger.exception('Side effect %s failed', name)


class BackgroundDispatcher:
    """Runs side effects on a thread pool; failures are logged, never raised."""

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='agenda-side-effect')

    def submit(self, name: str, task: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        return self._executor.submit(_run_logged, name, task, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineDispatcher:
    """Runs side effects immediately in the calling thread."""

    def submit(self, name: str, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        _run_logged(name, task, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        del wait
