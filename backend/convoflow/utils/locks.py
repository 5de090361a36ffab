# /convoflow/utils/locks.py

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict

# Per-conversation serialization: inbound messages of one conversation are
# processed one at a time and in order. With Redis the lock is shared across
# workers and processes; without it, an asyncio.Lock per conversation id guards a
# single process.

logger = logging.getLogger(__name__)


class ConversationLockTimeout(Exception):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Timed out waiting for the lock of conversation '{conversation_id}'")


class ConversationLocks:
    def __init__(self, redis_client=None, timeout: int = 30, key_prefix: str = "flow_lock"):
        self.redis = redis_client
        self.timeout = timeout
        self.key_prefix = key_prefix
        self._local_locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, conversation_id: str):
        if self.redis:
            async with self._redis_lock(conversation_id):
                yield
        else:
            async with self._local_lock(conversation_id):
                yield

    @asynccontextmanager
    async def _redis_lock(self, conversation_id: str):
        lock = self.redis.lock(
            f"{self.key_prefix}:{conversation_id}",
            timeout=self.timeout,
            blocking_timeout=self.timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise ConversationLockTimeout(conversation_id)
        try:
            yield
        finally:
            try:
                await lock.release()
            except Exception as e:
                # The lock expired while we held it; the work itself has completed.
                logger.warning(f"Failed to release lock for conversation {conversation_id}: {e}")

    @asynccontextmanager
    async def _local_lock(self, conversation_id: str):
        lock = self._local_locks.setdefault(conversation_id, asyncio.Lock())
        self._waiters[conversation_id] = self._waiters.get(conversation_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise ConversationLockTimeout(conversation_id)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[conversation_id] -= 1
            if self._waiters[conversation_id] == 0:
                self._waiters.pop(conversation_id, None)
                self._local_locks.pop(conversation_id, None)
