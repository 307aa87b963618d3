"""Chat threads and their messages.

Each chat owns a message partition named after its id; message ids come from
that partition's sequence, so they ascend without gaps in creation order.
"""

from __future__ import annotations

import logging

from .constants import CHAT_IDLE, CHAT_PARTITION, CHAT_RUNNING, CHAT_STATES, MESSAGE_PARTITION_PREFIX
from .errors import InvalidArgumentError, NotFoundError
from .models import ChatThread, Message, message_adapter
from .store import Partition, Store, Transaction, dump_record, encode_key, load_record

logger = logging.getLogger(__name__)


def message_partition_name(chat_id: int) -> str:
    """Partition holding a chat's messages."""
    return MESSAGE_PARTITION_PREFIX + encode_key(chat_id).hex()


class ChatRepository:
    """Chat index plus one message partition per chat."""

    def __init__(self, store: Store):
        self.store = store

    # --- Chats ---

    def list_chats(self) -> list[ChatThread]:
        with self.store.read_tx() as tx:
            rows = tx.partition(CHAT_PARTITION).scan()
        return [load_record(ChatThread, raw) for _, raw in rows]

    def get_chat(self, chat_id: int) -> ChatThread:
        with self.store.read_tx() as tx:
            return self._get_chat(tx, chat_id)

    def create_chat(self, name: str) -> ChatThread:
        """Create an idle chat and its message partition."""
        with self.store.write_tx() as tx:
            chats = tx.partition(CHAT_PARTITION)
            chat = ChatThread(id=chats.next_sequence(), name=name, state=CHAT_IDLE)
            chats.put(chat.id, dump_record(chat))
            tx.create_partition(message_partition_name(chat.id))
        logger.info(f"Created chat {chat.id} ({name!r})")
        return chat

    def rename_chat(self, chat_id: int, name: str) -> ChatThread:
        with self.store.write_tx() as tx:
            chat = self._get_chat(tx, chat_id)
            chat.name = name
            tx.partition(CHAT_PARTITION).put(chat.id, dump_record(chat))
        return chat

    def delete_chat(self, chat_id: int) -> None:
        """Drop the chat record and its whole message partition together."""
        with self.store.write_tx() as tx:
            if not tx.partition(CHAT_PARTITION).delete(chat_id):
                raise NotFoundError(f"chat not found: {chat_id}")
            name = message_partition_name(chat_id)
            if tx.has_partition(name):
                tx.drop_partition(name)
        logger.info(f"Deleted chat {chat_id}")

    def update_chat_state(
        self, chat_id: int, state: str, expected: str | None = None
    ) -> ChatThread:
        """Set a chat's state to idle or running.

        Args:
            chat_id: Chat to update
            state: New state, "idle" or "running"
            expected: If given, the update only happens when the current
                state equals it (compare-and-set)

        Raises:
            InvalidArgumentError: state is not a known value, or the current
                state differs from expected.
            NotFoundError: the chat does not exist.
        """
        if state not in CHAT_STATES:
            raise InvalidArgumentError(
                f"invalid state: {state!r} (must be 'idle' or 'running')"
            )
        with self.store.write_tx() as tx:
            chat = self._get_chat(tx, chat_id)
            if expected is not None and chat.state != expected:
                raise InvalidArgumentError(
                    f"chat {chat_id} is {chat.state}, expected {expected}"
                )
            chat.state = state
            tx.partition(CHAT_PARTITION).put(chat.id, dump_record(chat))
        return chat

    def reset_running_chats(self) -> list[int]:
        """Return every chat left running by an abrupt exit to idle."""
        reset = []
        with self.store.write_tx() as tx:
            chats = tx.partition(CHAT_PARTITION)
            for chat_id, raw in chats.scan():
                chat = load_record(ChatThread, raw)
                if chat.state == CHAT_RUNNING:
                    chat.state = CHAT_IDLE
                    chats.put(chat_id, dump_record(chat))
                    reset.append(chat_id)
        if reset:
            logger.warning(f"Reset stale running state on chats {reset}")
        return reset

    def _get_chat(self, tx: Transaction, chat_id: int) -> ChatThread:
        raw = tx.partition(CHAT_PARTITION).get(chat_id)
        if raw is None:
            raise NotFoundError(f"chat not found: {chat_id}")
        return load_record(ChatThread, raw)

    # --- Messages ---

    def list_messages(self, chat_id: int) -> list[Message]:
        """All messages of a chat in ascending id order."""
        with self.store.read_tx() as tx:
            rows = self._messages(tx, chat_id).scan()
        return [load_record(message_adapter, raw) for _, raw in rows]

    def create_message(self, msg: Message) -> Message:
        """Persist a new message; returns a copy carrying its assigned id."""
        with self.store.write_tx() as tx:
            messages = self._messages(tx, msg.chat_id)
            created = msg.model_copy(update={"message_id": messages.next_sequence()})
            messages.put(created.message_id, dump_record(created))
        return created

    def get_message(self, chat_id: int, message_id: int) -> Message:
        with self.store.read_tx() as tx:
            raw = self._messages(tx, chat_id).get(message_id)
        if raw is None:
            raise NotFoundError(f"message {message_id} not found in chat {chat_id}")
        return load_record(message_adapter, raw)

    def update_message(self, msg: Message) -> Message:
        """Overwrite an existing message (kind may change)."""
        with self.store.write_tx() as tx:
            messages = self._messages(tx, msg.chat_id)
            if not messages.contains(msg.message_id):
                raise NotFoundError(
                    f"message {msg.message_id} not found in chat {msg.chat_id}"
                )
            messages.put(msg.message_id, dump_record(msg))
        return msg

    def delete_message(self, chat_id: int, message_id: int) -> None:
        with self.store.write_tx() as tx:
            self._messages(tx, chat_id).delete(message_id)

    def _messages(self, tx: Transaction, chat_id: int) -> Partition:
        name = message_partition_name(chat_id)
        if not tx.has_partition(name):
            raise NotFoundError(f"chat not found: {chat_id}")
        return tx.partition(name)
