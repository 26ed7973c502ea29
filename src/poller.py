"""Waiting for asynchronous remote operations."""

import logging
import threading
import time
from collections.abc import Callable

from metrics import OPERATION_POLLS, OPERATION_WAIT_SECONDS
from models import (
    OperationCancelledError,
    OperationStatus,
    OperationTimeoutError,
    PendingOperation,
    RemoteOperationFailedError,
    RemoteShape,
    TransientNetworkError,
)
from remote import RemoteClient

logger = logging.getLogger(__name__)


class OperationPoller:
    """Polls a PendingOperation until it reaches a terminal state.

    Each poll is a plain status fetch; the mutation is never re-issued.
    Cancelling stops the wait but leaves the remote operation running,
    since remote APIs often have no cancel primitive.
    """

    def __init__(
        self,
        client: RemoteClient,
        interval: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._interval = interval
        self._clock = clock

    def await_completion(
        self,
        operation: PendingOperation,
        deadline: float,
        cancel: threading.Event | None = None,
    ) -> RemoteShape | None:
        """Block until the operation is terminal.

        Args:
            operation: The operation to wait for; its status is updated in place.
            deadline: Absolute time, on this poller's clock, to give up at.
            cancel: Set to stop waiting promptly.

        Returns:
            The remote resource reported with a successful result, if any.

        Raises:
            OperationTimeoutError: Still running when the deadline passed.
            OperationCancelledError: cancel was set while waiting.
            RemoteOperationFailedError: The operation failed or was canceled remotely.
        """
        cancel = cancel or threading.Event()
        started = self._clock()

        try:
            while True:
                if cancel.is_set():
                    raise OperationCancelledError(
                        f"stopped waiting for {operation.action} operation "
                        f"{operation.handle}; it continues remotely"
                    )

                suggested: float | None = None
                try:
                    report = self._client.poll_status(operation)
                except TransientNetworkError as e:
                    OPERATION_POLLS.labels(action=operation.action, status="error").inc()
                    logger.warning(
                        "Polling %s operation %s failed, will retry: %s",
                        operation.action,
                        operation.handle,
                        e,
                    )
                else:
                    OPERATION_POLLS.labels(
                        action=operation.action, status=report.status.value
                    ).inc()
                    operation.status = report.status

                    if report.status is OperationStatus.SUCCEEDED:
                        logger.info(
                            "%s operation %s succeeded", operation.action, operation.handle
                        )
                        return report.resource
                    if report.status.is_terminal:
                        operation.error = report.error
                        raise RemoteOperationFailedError(
                            f"{operation.action} operation {operation.handle} ended "
                            f"{report.status.value}: {report.error}",
                            payload=report.error,
                        )
                    suggested = report.retry_after

                remaining = deadline - self._clock()
                if remaining <= 0:
                    raise OperationTimeoutError(
                        f"{operation.action} operation {operation.handle} still "
                        "running at deadline"
                    )

                wait = min(suggested or self._interval, remaining)
                logger.debug(
                    "%s operation %s still running, next poll in %.1fs",
                    operation.action,
                    operation.handle,
                    wait,
                )
                cancel.wait(wait)
        finally:
            OPERATION_WAIT_SECONDS.labels(action=operation.action).observe(
                self._clock() - started
            )
