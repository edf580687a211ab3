"""Conduit to the out-of-process inference worker."""

import asyncio
import logging
import multiprocessing
import queue
from typing import Any, Callable, Optional

from .config import WorkerConfig
from .protocol import ErrorEvent, WorkerEvent, decode_event
from .worker import run_worker

logger = logging.getLogger(__name__)

# Worker entry point: (request queue, event queue, worker config)
WorkerTarget = Callable[[Any, Any, WorkerConfig], None]
EventHandler = Callable[[WorkerEvent], Any]

# Interval for checking the stop event and worker liveness
POLL_INTERVAL_S = 0.5

_NO_MESSAGE = object()


class WorkerChannelError(RuntimeError):
    """Raised when the channel is used while the worker is not running."""


class WorkerChannel:
    """Owns one worker process and streams its events to a single handler."""

    def __init__(self, config: WorkerConfig, target: Optional[WorkerTarget] = None):
        """Initialize the channel.

        Args:
            config: Worker configuration, also passed to the worker process.
            target: Worker entry point. Must be importable by the child process.
        """
        self.worker_config = config
        self._target = target or run_worker
        self._context = multiprocessing.get_context(config.start_method)

        self._requests = None
        self._events = None
        self._process = None
        self._handler: Optional[EventHandler] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._dead = False

    @property
    def is_running(self) -> bool:
        """Whether requests can currently be sent."""
        return (
            not self._dead
            and self._process is not None
            and self._reader_task is not None
            and not self._reader_task.done()
        )

    @property
    def is_dead(self) -> bool:
        """Whether the worker died and the channel reported it."""
        return self._dead

    def on_event(self, handler: EventHandler) -> None:
        """Register the event handler, replacing any previous one."""
        self._handler = handler

    def send(self, request: dict) -> None:
        """Enqueue a job request for the worker. Never blocks.

        Raises:
            WorkerChannelError: If the channel is not running.
        """
        if not self.is_running:
            raise WorkerChannelError("Worker channel is not running")

        self._requests.put_nowait(request)
        logger.debug(f"Queued request for '{request.get('fileName')}'")

    def _poll(self) -> Any:
        try:
            return self._events.get(timeout=POLL_INTERVAL_S)
        except queue.Empty:
            return _NO_MESSAGE

    def _deliver(self, event: WorkerEvent) -> None:
        if self._handler is None:
            logger.warning(f"No event handler registered, dropping '{event.status}' event")
            return

        try:
            self._handler(event)
        except Exception:
            logger.exception(f"Event handler failed on '{event.status}' event")

    async def _read_loop(self) -> None:
        """Deliver worker events in order until stopped or the worker dies."""
        logger.info("Worker event reader started")

        while not self._stop_event.is_set():
            try:
                message = await asyncio.to_thread(self._poll)

                if message is _NO_MESSAGE:
                    if self._process.is_alive() or self._stop_event.is_set():
                        continue

                    exit_code = self._process.exitcode
                    logger.error(f"Worker process exited unexpectedly (code {exit_code})")
                    self._dead = True
                    self._deliver(
                        ErrorEvent.from_message(
                            f"Worker process exited unexpectedly (exit code {exit_code})."
                        )
                    )
                    break

                try:
                    event = decode_event(message)
                except ValueError as e:
                    logger.warning(f"Dropping malformed worker message: {e}")
                    continue

                if event is not None:
                    self._deliver(event)

            except asyncio.CancelledError:
                logger.info("Worker event reader cancelled")
                break

            except Exception as e:
                logger.exception(f"Error in worker event reader: {e}")
                # Avoid tight loop on unexpected error
                await asyncio.sleep(POLL_INTERVAL_S)

        logger.info("Worker event reader stopped")

    async def start(self) -> None:
        """Spawn the worker process and start delivering its events."""
        if self._process is not None:
            logger.warning("Worker channel already started")
            return

        logger.info(
            f"Starting worker process (start method: {self.worker_config.start_method})"
        )
        self._stop_event.clear()
        self._dead = False
        self._requests = self._context.Queue()
        self._events = self._context.Queue()
        self._process = self._context.Process(
            target=self._target,
            args=(self._requests, self._events, self.worker_config),
            name="multiscribe-worker",
            daemon=True,
        )
        self._process.start()
        logger.info(f"Worker process started with PID: {self._process.pid}")

        self._reader_task = asyncio.create_task(self._read_loop())

    async def stop(self) -> None:
        """Shut the worker down and release its resources."""
        if self._process is None:
            logger.warning("Worker channel not running")
            return

        logger.info("Stopping worker channel")
        self._stop_event.set()

        if self._process.is_alive():
            try:
                # Shutdown sentinel
                self._requests.put_nowait(None)
            except Exception as e:
                logger.warning(f"Could not send shutdown request to worker: {e}")

            timeout = self.worker_config.shutdown_timeout_s
            await asyncio.to_thread(self._process.join, timeout)
            if self._process.is_alive():
                logger.warning("Timeout waiting for worker to exit, terminating")
                self._process.terminate()
                await asyncio.to_thread(self._process.join, 1.0)

        if self._reader_task:
            try:
                await asyncio.wait_for(self._reader_task, timeout=POLL_INTERVAL_S * 4)
            except asyncio.TimeoutError:
                logger.warning("Timeout waiting for event reader to stop")
                self._reader_task.cancel()
            except Exception as e:
                logger.exception(f"Error stopping event reader: {e}")

        for q in (self._requests, self._events):
            q.close()
            q.cancel_join_thread()

        self._process = None
        self._reader_task = None
        self._requests = None
        self._events = None
        logger.info("Worker channel stopped")

    async def __aenter__(self) -> "WorkerChannel":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
