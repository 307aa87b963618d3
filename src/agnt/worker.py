"""Request queue and the generation worker.

Consumers submit chat ids without blocking; a single worker task drains the
queue one request at a time, so no two rounds ever run concurrently in a
process. Progress and completion are reported on the worker's notification
queue.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .agent import Agent
from .errors import AgntError, GenerationCancelledError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerateRequest:
    chat_id: int


@dataclass(frozen=True)
class GenerationProgress:
    """Something in the chat changed; re-read it."""

    chat_id: int


@dataclass(frozen=True)
class GenerationComplete:
    """A round ended. error is None on success."""

    chat_id: int
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


Notification = GenerationProgress | GenerationComplete


class GenerationQueue:
    """Buffered channel of generation requests (maxsize 0 = unbounded)."""

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[GenerateRequest] = asyncio.Queue(maxsize)

    def submit(self, chat_id: int) -> None:
        """Enqueue a request and return immediately.

        Raises:
            asyncio.QueueFull: a bounded queue has no free slot.
        """
        self._queue.put_nowait(GenerateRequest(chat_id))

    async def get(self) -> GenerateRequest:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    def drain(self) -> list[GenerateRequest]:
        """Remove and return everything still waiting."""
        pending = []
        while not self._queue.empty():
            pending.append(self._queue.get_nowait())
            self._queue.task_done()
        return pending

    def __len__(self) -> int:
        return self._queue.qsize()


class Worker:
    """Serializes generation rounds for every chat."""

    def __init__(self, agent: Agent, queue: GenerationQueue | None = None):
        self.agent = agent
        self.queue = queue or GenerationQueue()
        self.notifications: asyncio.Queue[Notification] = asyncio.Queue()
        self._stopping = False
        self._task: asyncio.Task | None = None

    def submit(self, chat_id: int) -> None:
        self.queue.submit(chat_id)

    def start(self) -> asyncio.Task:
        """Run the worker loop as a task on the current event loop."""
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self.run())
        return self._task

    def stop(self) -> None:
        """Stop taking requests and abort the running round, if any."""
        self._stopping = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def close(self) -> None:
        """Stop and wait for the worker to exit."""
        self.stop()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run(self) -> None:
        """Serve requests until stopped."""
        self.agent.chats.reset_running_chats()
        logger.info("Generation worker started")
        try:
            while not self._stopping:
                request = await self.queue.get()
                try:
                    await self._handle(request)
                finally:
                    self.queue.task_done()
        finally:
            for request in self.queue.drain():
                self._notify(GenerationComplete(
                    request.chat_id,
                    GenerationCancelledError("worker stopped before the round started"),
                ))
            logger.info("Generation worker stopped")

    async def _handle(self, request: GenerateRequest) -> None:
        chat_id = request.chat_id
        logger.info(f"Got generate request for chat {chat_id}")

        def on_update() -> None:
            self._notify(GenerationProgress(chat_id))

        error: BaseException | None = None
        try:
            await self.agent.generate(chat_id, on_update=on_update)
        except asyncio.CancelledError:
            self._notify(GenerationComplete(
                chat_id, GenerationCancelledError("round cancelled by shutdown")
            ))
            raise
        except AgntError as e:
            logger.warning(f"Generation for chat {chat_id} failed: {e}")
            error = e
        except Exception as e:
            logger.exception(f"Unexpected error generating for chat {chat_id}")
            error = e

        self._notify(GenerationComplete(chat_id, error))

    def _notify(self, event: Notification) -> None:
        self.notifications.put_nowait(event)
