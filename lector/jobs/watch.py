"""
Job watch stream.

The kubernetes watch is a blocking iterator, so a worker thread pumps its
events into an asyncio queue. Consumers iterate asynchronously and must
close the stream (or use it as an async context manager) to release the
connection. A failure of the underlying watch ends the stream and is kept
in JobWatch.error; it is not raised to the consumer.
"""

import asyncio
import threading
from typing import Callable, Iterator, Optional

from lector.cluster.metadata import JobEvent
from lector.errors import ClusterError, LectorError
from lector.utils.logging import get_logger

logger = get_logger(__name__)

_END = object()

# Seconds close() waits for the pump thread to exit
JOIN_TIMEOUT = 2.0


class JobWatch:
    """
    Async stream of job events.
    
    Attributes:
        selector: Label selector the stream was opened with
        error: Failure that ended the stream, if any
    """
    
    def __init__(
        self,
        events: Iterator[JobEvent],
        stop: Callable[[], None],
        selector: Optional[dict] = None,
    ):
        """
        Initialize job watch.
        
        Args:
            events: Blocking iterator of job events
            stop: Stops the underlying watch
            selector: Label selector, kept for logging
        """
        self.selector = dict(selector or {})
        self.error: Optional[LectorError] = None
        
        self._events = events
        self._stop = stop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self._done = False
    
    @property
    def closed(self) -> bool:
        """Whether close() was called."""
        return self._closed
    
    def start(self) -> "JobWatch":
        """Start pumping events. Must be called from the event loop."""
        if self._thread is not None:
            return self
        
        self._loop = asyncio.get_running_loop()
        self._thread = threading.Thread(
            target=self._pump,
            name="job-watch",
            daemon=True,
        )
        self._thread.start()
        
        logger.debug("Job watch started", selector=self.selector)
        
        return self
    
    def _pump(self) -> None:
        """Worker thread: move events from the watch into the queue."""
        try:
            for event in self._events:
                if self._closed:
                    break
                self._enqueue(event)
        except LectorError as e:
            if not self._closed:
                self.error = e
        except Exception as e:
            if not self._closed:
                self.error = ClusterError(f"watch jobs: {e}")
        finally:
            self._enqueue(_END)
    
    def _enqueue(self, item: object) -> None:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Event loop already closed
            pass
    
    def close(self) -> None:
        """
        Stop the watch and end the stream.
        
        Waits up to JOIN_TIMEOUT seconds for the pump thread to exit.
        """
        if self._closed:
            return
        
        self._closed = True
        self._stop()
        self._queue.put_nowait(_END)
        
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=JOIN_TIMEOUT)
            if self._thread.is_alive():
                logger.warning("Job watch thread did not exit", selector=self.selector)
        
        logger.debug("Job watch closed", selector=self.selector)
    
    def __aiter__(self) -> "JobWatch":
        return self
    
    async def __anext__(self) -> JobEvent:
        if self._done:
            raise StopAsyncIteration
        
        item = await self._queue.get()
        if item is _END:
            self._done = True
            if self.error is not None:
                logger.warning(
                    "Job watch ended with error",
                    selector=self.selector,
                    error=str(self.error),
                )
            raise StopAsyncIteration
        
        return item
    
    async def __aenter__(self) -> "JobWatch":
        return self.start()
    
    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
