"""Tests for chats and their messages."""

import pytest

from agnt.chats import message_partition_name
from agnt.errors import InvalidArgumentError, NotFoundError
from agnt.models import AgentMessage, ToolMessage, UserMessage


class TestChats:
    def test_create_chat_is_idle(self, chats):
        chat = chats.create_chat("c1")

        assert chat.id == 1
        assert chat.state == "idle"
        assert chats.get_chat(chat.id) == chat
        assert chats.list_messages(chat.id) == []

    def test_list_chats_in_creation_order(self, chats):
        first = chats.create_chat("first")
        second = chats.create_chat("second")
        assert [c.id for c in chats.list_chats()] == [first.id, second.id]

    def test_get_missing_chat(self, chats):
        with pytest.raises(NotFoundError):
            chats.get_chat(5)

    def test_rename_chat(self, chats, chat):
        chats.rename_chat(chat.id, "renamed")
        assert chats.get_chat(chat.id).name == "renamed"

    def test_rename_missing_chat(self, chats):
        with pytest.raises(NotFoundError):
            chats.rename_chat(5, "x")

    def test_delete_chat_drops_messages(self, chats, store, chat):
        chats.create_message(UserMessage(chat_id=chat.id, text="hi"))

        chats.delete_chat(chat.id)

        assert chats.list_chats() == []
        with pytest.raises(NotFoundError):
            chats.list_messages(chat.id)
        with store.read_tx() as tx:
            assert not tx.has_partition(message_partition_name(chat.id))

    def test_delete_missing_chat(self, chats):
        with pytest.raises(NotFoundError):
            chats.delete_chat(5)


class TestChatState:
    def test_update_state(self, chats, chat):
        assert chats.update_chat_state(chat.id, "running").state == "running"
        assert chats.get_chat(chat.id).state == "running"
        chats.update_chat_state(chat.id, "idle")
        assert chats.get_chat(chat.id).state == "idle"

    def test_invalid_state_rejected(self, chats, chat):
        with pytest.raises(InvalidArgumentError, match="invalid state"):
            chats.update_chat_state(chat.id, "paused")
        assert chats.get_chat(chat.id).state == "idle"

    def test_missing_chat(self, chats):
        with pytest.raises(NotFoundError):
            chats.update_chat_state(5, "running")

    def test_compare_and_set(self, chats, chat):
        chats.update_chat_state(chat.id, "running", expected="idle")

        with pytest.raises(InvalidArgumentError, match="expected idle"):
            chats.update_chat_state(chat.id, "running", expected="idle")
        assert chats.get_chat(chat.id).state == "running"

    def test_reset_running_chats(self, chats):
        a = chats.create_chat("a")
        b = chats.create_chat("b")
        chats.update_chat_state(b.id, "running")

        assert chats.reset_running_chats() == [b.id]
        assert {c.state for c in chats.list_chats()} == {"idle"}
        assert chats.reset_running_chats() == []
        assert chats.get_chat(a.id).state == "idle"


class TestMessages:
    def test_messages_get_sequential_ids(self, chats, chat):
        m1 = chats.create_message(UserMessage(chat_id=chat.id, text="hi"))
        m2 = chats.create_message(AgentMessage(chat_id=chat.id, text="hello"))
        m3 = chats.create_message(
            ToolMessage(chat_id=chat.id, tool_name="list_nodes", tool_args={})
        )

        assert [m.message_id for m in (m1, m2, m3)] == [1, 2, 3]
        assert chats.list_messages(chat.id) == [m1, m2, m3]

    def test_message_kinds_round_trip(self, chats, chat):
        """Stored messages come back as their concrete kind."""
        tool = chats.create_message(
            ToolMessage(chat_id=chat.id, tool_name="get_node", tool_args={"id": 3})
        )
        loaded = chats.get_message(chat.id, tool.message_id)

        assert isinstance(loaded, ToolMessage)
        assert loaded.tool_args == {"id": 3}
        assert not loaded.done

    def test_ids_are_per_chat(self, chats):
        a = chats.create_chat("a")
        b = chats.create_chat("b")
        chats.create_message(UserMessage(chat_id=a.id, text="1"))
        chats.create_message(UserMessage(chat_id=a.id, text="2"))

        assert chats.create_message(UserMessage(chat_id=b.id, text="x")).message_id == 1

    def test_create_message_in_missing_chat(self, chats):
        with pytest.raises(NotFoundError):
            chats.create_message(UserMessage(chat_id=9, text="hi"))

    def test_update_message(self, chats, chat):
        draft = chats.create_message(AgentMessage(chat_id=chat.id, text="Hel"))
        chats.update_message(draft.model_copy(update={"text": "Hello"}))

        assert chats.get_message(chat.id, draft.message_id).text == "Hello"

    def test_update_message_can_change_kind(self, chats, chat):
        draft = chats.create_message(AgentMessage(chat_id=chat.id, text="thinking"))
        tool = ToolMessage(
            chat_id=chat.id, message_id=draft.message_id, tool_name="list_nodes"
        )
        chats.update_message(tool)

        assert isinstance(chats.get_message(chat.id, draft.message_id), ToolMessage)

    def test_update_missing_message(self, chats, chat):
        """Update never creates a record."""
        with pytest.raises(NotFoundError):
            chats.update_message(AgentMessage(chat_id=chat.id, message_id=4, text="x"))
        assert chats.list_messages(chat.id) == []

    def test_get_missing_message(self, chats, chat):
        with pytest.raises(NotFoundError):
            chats.get_message(chat.id, 1)

    def test_delete_message(self, chats, chat):
        m1 = chats.create_message(UserMessage(chat_id=chat.id, text="a"))
        m2 = chats.create_message(UserMessage(chat_id=chat.id, text="b"))

        chats.delete_message(chat.id, m1.message_id)

        assert chats.list_messages(chat.id) == [m2]
        assert chats.create_message(UserMessage(chat_id=chat.id, text="c")).message_id == 3
