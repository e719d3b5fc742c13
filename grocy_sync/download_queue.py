"""Batched network operations with all-or-first-error completion"""

import itertools
import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Operation:
    """One unit of work for a DownloadQueue"""

    name: str
    call: Callable[[], Any]
    on_success: Optional[Callable[[Any], None]] = None


class DownloadQueue:
    """
    Runs a set of independent operations concurrently

    Exactly one of on_complete / on_error fires per started, non-empty
    queue. on_error receives the first failure; operations still running
    at that point are abandoned, not awaited. Success hooks of the
    operations run in append order right before on_complete, so results of
    a failing batch are never committed. After reset() no callback fires.
    """

    _tokens = itertools.count(1)

    def __init__(self, executor: Executor,
                 on_complete: Callable[[], None],
                 on_error: Callable[[BaseException], None],
                 name: str = "queue"):
        """
        Args:
            executor: Executor the operations are submitted to
            on_complete: Called once after every operation succeeded
            on_error: Called once with the first failure
            name: Label used in log messages
        """
        self.token = next(self._tokens)
        self.name = name
        self._executor = executor
        self._on_complete = on_complete
        self._on_error = on_error
        self._operations: List[Operation] = []
        self._results: Dict[int, Any] = {}
        self._futures: List[Future] = []
        self._pending = 0
        self._started = False
        self._finished = False
        self._reset = False
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"DownloadQueue({self.name}#{self.token}, {len(self._operations)} ops)"

    @property
    def size(self) -> int:
        return len(self._operations)

    def is_empty(self) -> bool:
        return not self._operations

    @property
    def is_active(self) -> bool:
        """True while started and neither finished nor reset"""
        return self._started and not self._finished and not self._reset

    def append(self, operation: Operation) -> None:
        if self._started:
            raise RuntimeError(f"Cannot append to {self!r} after start()")
        self._operations.append(operation)

    def start(self) -> None:
        """Launch all operations; a queue without operations does nothing"""
        with self._lock:
            if self._started:
                raise RuntimeError(f"{self!r} already started")
            self._started = True
            if not self._operations:
                logger.debug(f"{self!r} is empty, nothing to start")
                return
            self._pending = len(self._operations)

        logger.debug(f"Starting {self!r}")
        for index, operation in enumerate(self._operations):
            if self._finished or self._reset:
                break
            future = self._executor.submit(operation.call)
            self._futures.append(future)
            future.add_done_callback(partial(self._on_operation_done, index))

    def reset(self, cancel_in_flight: bool = True) -> None:
        """
        Discard the queue; late results of its operations are ignored

        Args:
            cancel_in_flight: Also cancel operations not yet running
        """
        with self._lock:
            self._reset = True
            futures = list(self._futures)
        if cancel_in_flight:
            for future in futures:
                future.cancel()
        logger.debug(f"Reset {self!r}")

    def _on_operation_done(self, index: int, future: Future) -> None:
        with self._lock:
            if self._reset or self._finished or future.cancelled():
                return
            error = future.exception()
            if error is None:
                self._results[index] = future.result()
                self._pending -= 1
                if self._pending > 0:
                    return
            self._finished = True

        if error is not None:
            logger.warning(f"{self!r}: operation '{self._operations[index].name}' failed: {error}")
            self._fire(self._on_error, error)
            return

        try:
            for i, operation in enumerate(self._operations):
                if self._reset:
                    break
                if operation.on_success:
                    operation.on_success(self._results[i])
        except Exception as e:
            logger.exception(f"{self!r}: success hook failed")
            self._fire(self._on_error, e)
            return
        self._fire(self._on_complete)

    def _fire(self, callback: Callable, *args: Any) -> None:
        # reset() may land between the last operation finishing and here
        if self._reset:
            logger.debug(f"{self!r} was reset, dropping its result")
            return
        callback(*args)
