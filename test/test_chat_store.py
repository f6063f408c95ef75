"""
Tests for the client-side chat store.
"""

import pytest

from relay.client.chat_store import ChatStore


def msg(message_id: int, chat_id: int = 1, content: str = "hi") -> dict:
    return {"id": message_id, "chatId": chat_id, "content": content}


@pytest.fixture
def store() -> ChatStore:
    store = ChatStore()
    store.apply_polled_chats(
        [
            {"id": 1, "unreadCount": 0, "lastMessage": None},
            {"id": 2, "unreadCount": 1, "lastMessage": None},
        ]
    )
    return store


class TestReceiveMessage:
    def test_appends_and_bumps_chat(self, store):
        assert store.receive_message(msg(10, chat_id=2)) is True

        assert store.messages_for(2) == [msg(10, chat_id=2)]
        assert store.chats[0]["id"] == 2
        assert store.chats[0]["lastMessage"]["id"] == 10
        assert store.unread_count(2) == 2
        assert store.last_update is not None

    def test_same_message_twice_is_stored_once(self, store):
        store.receive_message(msg(10))
        assert store.receive_message(msg(10)) is False

        assert [m["id"] for m in store.messages_for(1)] == [10]
        assert store.unread_count(1) == 1

    def test_selected_chat_stays_read(self, store):
        store.select_chat(1)

        store.receive_message(msg(10))

        assert store.unread_count(1) == 0
        assert store.chats[0]["id"] == 1

    def test_unknown_chat_is_marked_stale(self, store):
        store.receive_message(msg(10, chat_id=99))

        assert 99 in store.stale_chat_ids
        assert store.messages_for(99) == [msg(10, chat_id=99)]

    def test_message_without_chat_is_dropped(self, store):
        assert store.receive_message({"id": 10}) is False

    def test_total_unread(self, store):
        store.receive_message(msg(10, chat_id=1))
        store.receive_message(msg(11, chat_id=2))

        assert store.total_unread == 3


class TestOtherEvents:
    def test_delete_message(self, store):
        store.receive_message(msg(10))
        store.receive_message(msg(11))

        store.delete_message(1, 10)
        store.delete_message(5, 10)

        assert [m["id"] for m in store.messages_for(1)] == [11]

    def test_chat_updated_marks_stale(self, store):
        store.mark_chat_updated(2)
        store.mark_chat_updated(None)

        assert store.stale_chat_ids == {2}

    def test_sent_message_does_not_count_unread(self, store):
        assert store.add_sent_message(2, msg(20, chat_id=2)) is True
        assert store.add_sent_message(2, msg(20, chat_id=2)) is False

        assert store.unread_count(2) == 1
        assert store.chats[0]["id"] == 2


class TestPolling:
    def test_polled_chats_clear_stale(self, store):
        store.mark_chat_updated(2)

        store.apply_polled_chats([{"id": 2, "unreadCount": 0}])

        assert store.stale_chat_ids == set()
        assert [c["id"] for c in store.chats] == [2]

    def test_polled_messages_replace_sequence(self, store):
        store.receive_message(msg(10))
        store.receive_message(msg(12))

        store.apply_polled_messages(1, [msg(10), msg(11)])

        assert [m["id"] for m in store.messages_for(1)] == [10, 11]
        # Not marked read by the fetch: badge untouched
        assert store.unread_count(1) == 2

    def test_marked_as_read_clears_badge(self, store):
        store.receive_message(msg(10, chat_id=2))

        store.apply_polled_messages(2, [msg(9, chat_id=2), msg(10, chat_id=2)], marked_as_read_count=2)

        assert store.unread_count(2) == 0
        chat = next(c for c in store.chats if c["id"] == 2)
        assert chat["lastMessage"]["id"] == 10

    def test_live_after_poll_is_deduplicated(self, store):
        store.apply_polled_messages(1, [msg(10)])

        assert store.receive_message(msg(10)) is False
        assert len(store.messages_for(1)) == 1
