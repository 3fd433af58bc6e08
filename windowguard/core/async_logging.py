"""Queue-backed logging so log I/O never runs on the evaluation path.

The throttler logs synchronously from inside ``evaluate``. When async
logging is enabled, the real handlers of the ``windowguard`` logger are
moved behind a bounded queue drained by a background thread, so a slow
sink only ever costs a ``put_nowait``.
"""

import atexit
import logging
import queue
from logging.handlers import QueueHandler, QueueListener
from typing import Optional


class DroppingQueueHandler(QueueHandler):
    """Queue handler that drops records instead of blocking when full.

    Attributes:
        dropped: Number of records discarded because the queue was full
    """

    def __init__(self, log_queue: "queue.Queue[logging.LogRecord]"):
        super().__init__(log_queue)
        self.dropped = 0

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


_listener: Optional[QueueListener] = None
_queue_handler: Optional[DroppingQueueHandler] = None
_logger_name: Optional[str] = None


def setup_async_logging(
    logger_name: str = "windowguard", max_queue_size: int = 10000
) -> Optional[DroppingQueueHandler]:
    """Move the handlers of ``logger_name`` behind a background queue.

    Returns:
        The queue handler now attached to the logger, or None if the logger
        has no handlers to offload or async logging is already active.
    """
    global _listener, _queue_handler, _logger_name

    if _listener is not None:
        return None

    target = logging.getLogger(logger_name)
    handlers = list(target.handlers)
    if not handlers:
        return None

    log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(maxsize=max_queue_size)
    queue_handler = DroppingQueueHandler(log_queue)
    for handler in handlers:
        target.removeHandler(handler)
    target.addHandler(queue_handler)

    listener = QueueListener(log_queue, *handlers, respect_handler_level=True)
    listener.start()

    _listener = listener
    _queue_handler = queue_handler
    _logger_name = logger_name
    atexit.register(shutdown_async_logging)
    return queue_handler


def shutdown_async_logging() -> None:
    """Flush queued records and restore the original handlers."""
    global _listener, _queue_handler, _logger_name

    if _listener is None:
        return

    _listener.stop()
    target = logging.getLogger(_logger_name)
    if _queue_handler is not None:
        target.removeHandler(_queue_handler)
    for handler in _listener.handlers:
        target.addHandler(handler)

    _listener = None
    _queue_handler = None
    _logger_name = None
