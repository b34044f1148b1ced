# policy_qa/concurrency.py
"""
Bounded execution of external calls.

Embedding, index and generation calls run on a shared thread pool so that a
hung provider cannot hold a request forever. A call that exceeds its bound
raises ``DownstreamTimeout``; the worker thread is left to finish on its own.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, TypeVar

from policy_qa.errors import DownstreamTimeout


logger = logging.getLogger(__name__)

T = TypeVar("T")

EXTERNAL_CALL_EXECUTOR = ThreadPoolExecutor(
    max_workers=16,
    thread_name_prefix="external-call",
)


def submit(fn: Callable[..., T], *args, **kwargs) -> "Future[T]":
    return EXTERNAL_CALL_EXECUTOR.submit(fn, *args, **kwargs)


def wait_bounded(future: "Future[T]", operation: str, timeout_seconds: float) -> T:

    try:
        return future.result(timeout=timeout_seconds)

    except FutureTimeoutError:

        future.cancel()

        logger.error(
            "External call timed out",
            extra={"operation": operation, "timeout_seconds": timeout_seconds},
        )

        raise DownstreamTimeout(operation, timeout_seconds)


def call_with_timeout(
    operation: str,
    timeout_seconds: float,
    fn: Callable[..., T],
    *args,
    **kwargs,
) -> T:

    start = time.time()

    result = wait_bounded(submit(fn, *args, **kwargs), operation, timeout_seconds)

    logger.debug(
        "External call completed",
        extra={
            "operation": operation,
            "latency_seconds": round(time.time() - start, 3),
        },
    )

    return result
