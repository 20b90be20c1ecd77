"""Tests for the message lifecycle engine."""

from datetime import timedelta

import pytest

from chathub.infra.clock import utcnow
from chathub.infra.errors import (
    InvalidContent,
    InvalidState,
    NotFound,
    NotOwner,
    RateLimited,
    TooOld,
    UnknownSender,
)
from chathub.models.message import (
    UNSENT_PLACEHOLDER,
    EventAnnounced,
    MediaItem,
    MediaType,
    MemberJoined,
    MessageKind,
    MessageState,
    MessageStatus,
)
from chathub.services.lifecycle import MessageLifecycleEngine
from chathub.services.previews import notification_body, present


class TestCreateMessage:

    @pytest.mark.asyncio
    async def test_snapshots_author(self, engine):
        message = await engine.create_message("user-a", text="  hi  ", channel="general")

        assert message.text == "hi"
        assert message.user.id == "user-a"
        assert message.user.name == "A"
        assert message.channel == "general"
        assert message.state == MessageState.ACTIVE

    @pytest.mark.asyncio
    async def test_defaults_to_general_channel(self, engine):
        message = await engine.create_message("user-a", text="hello")
        assert message.channel == "general"

    @pytest.mark.asyncio
    async def test_text_at_max_length_accepted(self, engine):
        message = await engine.create_message("user-a", text="x" * 2000)
        assert len(message.text) == 2000

    @pytest.mark.asyncio
    async def test_text_over_max_length_rejected(self, engine, store):
        with pytest.raises(InvalidContent):
            await engine.create_message("user-a", text="x" * 2001)
        assert store.page("general").messages == []

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, engine):
        with pytest.raises(InvalidContent):
            await engine.create_message("user-a", text="   ")

    @pytest.mark.asyncio
    async def test_media_only_message(self, engine):
        images = [MediaItem(url="https://cdn.example.com/a.jpg"), MediaItem(url="https://cdn.example.com/b.jpg")]

        message = await engine.create_message("user-a", images=images)

        assert message.text is None
        assert len(message.images) == 2

    @pytest.mark.asyncio
    async def test_channel_name_length(self, engine):
        message = await engine.create_message("user-a", text="hi", channel="c" * 64)
        assert message.channel == "c" * 64

        with pytest.raises(InvalidContent):
            await engine.create_message("user-a", text="hi", channel="c" * 65)

    @pytest.mark.asyncio
    async def test_missing_sender(self, engine):
        with pytest.raises(UnknownSender):
            await engine.create_message(None, text="hi")

    @pytest.mark.asyncio
    async def test_unknown_sender(self, engine):
        with pytest.raises(UnknownSender):
            await engine.create_message("ghost", text="hi")

    @pytest.mark.asyncio
    async def test_rate_limited_after_thirty(self, engine, store, limiter_clock):
        for i in range(30):
            await engine.create_message("user-a", text=f"message {i}")

        with pytest.raises(RateLimited) as exc_info:
            await engine.create_message("user-a", text="one too many")
        assert exc_info.value.retry_after == 60
        assert len(store.page("general", limit=100).messages) == 30

        limiter_clock.advance(61)
        message = await engine.create_message("user-a", text="back again")
        assert message.text == "back again"

    @pytest.mark.asyncio
    async def test_created_at_monotonic(self, engine):
        messages = [await engine.create_message("user-a", text=str(i)) for i in range(10)]

        stamps = [m.created_at for m in messages]
        assert stamps == sorted(stamps)


class TestReplies:

    @pytest.mark.asyncio
    async def test_reply_snapshot_captured(self, engine):
        target = await engine.create_message(
            "user-b",
            text="y" * 150,
            images=[MediaItem(url="https://cdn.example.com/v.mp4", type=MediaType.VIDEO)],
        )

        reply = await engine.create_message("user-a", text="agreed", reply_to=target.id)

        assert reply.reply_to == target.id
        assert reply.reply_snapshot.author_name == "B"
        assert reply.reply_snapshot.text == "y" * 97 + "..."
        assert len(reply.reply_snapshot.text) == 100
        assert reply.reply_snapshot.thumbnail_url == "https://cdn.example.com/v.mp4"
        assert reply.reply_snapshot.media_type == MediaType.VIDEO
        assert reply.reply_snapshot.media_count == 1

    @pytest.mark.asyncio
    async def test_reply_to_deleted_message_drops_link(self, engine):
        target = await engine.create_message("user-b", text="soon gone")
        await engine.delete_message("user-b", target.id)

        reply = await engine.create_message("user-a", text="what was that?", reply_to=target.id)

        assert reply.reply_to is None
        assert reply.reply_snapshot is None
        assert present(reply)["replyTo"] is None

    @pytest.mark.asyncio
    async def test_reply_to_missing_message_drops_link(self, engine):
        reply = await engine.create_message("user-a", text="hm", reply_to="missing")
        assert reply.reply_to is None

    @pytest.mark.asyncio
    async def test_reply_across_channels_drops_link(self, engine):
        target = await engine.create_message("user-b", text="elsewhere", channel="random")

        reply = await engine.create_message("user-a", text="hm", channel="general", reply_to=target.id)

        assert reply.reply_to is None

    @pytest.mark.asyncio
    async def test_get_message_for_reply(self, engine):
        target = await engine.create_message("user-b", text="quote me")

        found = await engine.get_message_for_reply(target.id)
        assert found.id == target.id

        await engine.unsend_message("user-b", target.id)
        with pytest.raises(InvalidState):
            await engine.get_message_for_reply(target.id)
        with pytest.raises(NotFound):
            await engine.get_message_for_reply("missing")


class TestEditMessage:

    @pytest.mark.asyncio
    async def test_edit_round_trip(self, engine, store):
        message = await engine.create_message("user-a", text="first draft")

        result = await engine.edit_message("user-a", message.id, "second draft")

        assert result.changed is True
        stored = store.get(message.id)
        assert stored.text == "second draft"
        assert stored.is_edited is True
        assert stored.edited_at is not None
        assert [record.text for record in stored.edit_history] == ["first draft"]
        assert stored.state == MessageState.EDITED

    @pytest.mark.asyncio
    async def test_repeated_edits_keep_full_history(self, engine, store):
        message = await engine.create_message("user-a", text="v1")
        await engine.edit_message("user-a", message.id, "v2")
        await engine.edit_message("user-a", message.id, "v3")

        stored = store.get(message.id)
        assert [record.text for record in stored.edit_history] == ["v1", "v2"]

    @pytest.mark.asyncio
    async def test_identical_text_is_noop(self, engine):
        message = await engine.create_message("user-a", text="same")

        result = await engine.edit_message("user-a", message.id, "same")

        assert result.changed is False
        assert result.message.is_edited is False

    @pytest.mark.asyncio
    async def test_non_author_rejected(self, engine, store):
        message = await engine.create_message("user-a", text="mine")

        with pytest.raises(NotOwner):
            await engine.edit_message("user-b", message.id, "yours now")
        assert store.get(message.id).text == "mine"

    @pytest.mark.asyncio
    async def test_edit_window_expired(self, store, directory, rate_limiter):
        author_engine = MessageLifecycleEngine(store, directory, rate_limiter)
        message = await author_engine.create_message("user-a", text="old news")
        late_engine = MessageLifecycleEngine(
            store, directory, rate_limiter,
            clock=lambda: utcnow() + timedelta(minutes=16),
        )

        with pytest.raises(TooOld):
            await late_engine.edit_message("user-a", message.id, "too late")

    @pytest.mark.asyncio
    async def test_empty_edit_rejected(self, engine):
        message = await engine.create_message("user-a", text="keep")
        with pytest.raises(InvalidContent):
            await engine.edit_message("user-a", message.id, "   ")

    @pytest.mark.asyncio
    async def test_edit_unsent_rejected(self, engine):
        message = await engine.create_message("user-a", text="gone")
        await engine.unsend_message("user-a", message.id)

        with pytest.raises(InvalidState):
            await engine.edit_message("user-a", message.id, "back")

    @pytest.mark.asyncio
    async def test_edit_missing_message(self, engine):
        with pytest.raises(NotFound):
            await engine.edit_message("user-a", "missing", "text")


class TestDeleteMessage:

    @pytest.mark.asyncio
    async def test_author_can_delete(self, engine, store):
        message = await engine.create_message("user-a", text="bye")

        result = await engine.delete_message("user-a", message.id)

        assert result.changed is True
        stored = store.get(message.id)
        assert stored.is_deleted is True
        assert stored.deleted_by == "user-a"
        assert stored.deleted_at is not None

    @pytest.mark.asyncio
    async def test_non_author_rejected_and_unchanged(self, engine, store):
        message = await engine.create_message("user-a", text="mine")

        with pytest.raises(NotOwner):
            await engine.delete_message("user-b", message.id)

        stored = store.get(message.id)
        assert stored.is_deleted is False
        assert stored.updated_at == message.updated_at

    @pytest.mark.asyncio
    async def test_admin_can_delete_any_message(self, engine, store):
        message = await engine.create_message("user-a", text="spam")

        await engine.delete_message("user-admin", message.id)

        assert store.get(message.id).deleted_by == "user-admin"

    @pytest.mark.asyncio
    async def test_delete_twice_is_noop(self, engine):
        message = await engine.create_message("user-a", text="bye")
        await engine.delete_message("user-a", message.id)

        result = await engine.delete_message("user-a", message.id)

        assert result.changed is False

    @pytest.mark.asyncio
    async def test_deleted_message_redacted_for_clients(self, engine):
        message = await engine.create_message("user-a", text="regret")
        result = await engine.delete_message("user-a", message.id)

        payload = present(result.message)

        assert payload["isDeleted"] is True
        assert payload["text"] == "[message deleted]"
        assert payload["state"] == "deleted"


class TestUnsendMessage:

    @pytest.mark.asyncio
    async def test_unsend_round_trip(self, engine, store):
        message = await engine.create_message(
            "user-a", text="oops", images=[MediaItem(url="https://cdn.example.com/a.jpg")]
        )

        result = await engine.unsend_message("user-a", message.id)

        assert result.changed is True
        stored = store.get(message.id)
        assert stored.text == UNSENT_PLACEHOLDER
        assert stored.images == []
        assert stored.is_unsent is True
        assert stored.unsent_at is not None
        assert stored.original_text == "oops"

    @pytest.mark.asyncio
    async def test_original_text_never_presented(self, engine):
        message = await engine.create_message("user-a", text="private")
        result = await engine.unsend_message("user-a", message.id)

        payload = present(result.message)

        assert "originalText" not in payload
        assert payload["text"] == UNSENT_PLACEHOLDER
        assert payload["isUnsent"] is True

    @pytest.mark.asyncio
    async def test_only_author_can_unsend(self, engine):
        message = await engine.create_message("user-a", text="mine")
        with pytest.raises(NotOwner):
            await engine.unsend_message("user-admin", message.id)

    @pytest.mark.asyncio
    async def test_unsend_twice_is_noop(self, engine):
        message = await engine.create_message("user-a", text="oops")
        await engine.unsend_message("user-a", message.id)

        result = await engine.unsend_message("user-a", message.id)

        assert result.changed is False
        assert result.message.original_text == "oops"

    @pytest.mark.asyncio
    async def test_unsend_deleted_rejected(self, engine):
        message = await engine.create_message("user-a", text="oops")
        await engine.delete_message("user-a", message.id)

        with pytest.raises(InvalidState):
            await engine.unsend_message("user-a", message.id)


class TestReactions:

    @pytest.mark.asyncio
    async def test_add_and_count(self, engine):
        message = await engine.create_message("user-a", text="great news")

        await engine.add_reaction("user-b", message.id, "🎉")
        result = await engine.add_reaction("user-c", message.id, "🎉")

        reaction = result.message.reaction_for("🎉")
        assert reaction.users == ["user-b", "user-c"]
        assert reaction.count == 2

    @pytest.mark.asyncio
    async def test_duplicate_reaction_is_noop(self, engine):
        message = await engine.create_message("user-a", text="great news")
        await engine.add_reaction("user-b", message.id, "🎉")

        result = await engine.add_reaction("user-b", message.id, "🎉")

        assert result.changed is False
        assert result.message.reaction_for("🎉").count == 1

    @pytest.mark.asyncio
    async def test_remove_drops_empty_entry(self, engine):
        message = await engine.create_message("user-a", text="great news")
        await engine.add_reaction("user-b", message.id, "👍")

        result = await engine.remove_reaction("user-b", message.id, "👍")

        assert result.changed is True
        assert result.message.reactions == []

    @pytest.mark.asyncio
    async def test_remove_absent_reaction_is_noop(self, engine):
        message = await engine.create_message("user-a", text="great news")

        result = await engine.remove_reaction("user-b", message.id, "👍")

        assert result.changed is False

    @pytest.mark.asyncio
    async def test_invalid_emoji(self, engine):
        message = await engine.create_message("user-a", text="great news")

        with pytest.raises(InvalidContent):
            await engine.add_reaction("user-b", message.id, "")
        with pytest.raises(InvalidContent):
            await engine.add_reaction("user-b", message.id, "x" * 33)

    @pytest.mark.asyncio
    async def test_react_to_deleted_rejected(self, engine):
        message = await engine.create_message("user-a", text="bye")
        await engine.delete_message("user-a", message.id)

        with pytest.raises(InvalidState):
            await engine.add_reaction("user-b", message.id, "👍")

    @pytest.mark.asyncio
    async def test_unknown_reactor(self, engine):
        message = await engine.create_message("user-a", text="hi")
        with pytest.raises(UnknownSender):
            await engine.add_reaction("ghost", message.id, "👍")


class TestReadReceipts:

    @pytest.mark.asyncio
    async def test_mark_read_is_idempotent(self, engine, store):
        message = await engine.create_message("user-a", text="read me")

        first = await engine.mark_read("user-b", message.id)
        second = await engine.mark_read("user-b", message.id)

        assert first.changed is True
        assert second.changed is False
        stored = store.get(message.id)
        assert [receipt.user_id for receipt in stored.read_by] == ["user-b"]
        assert stored.status == MessageStatus.READ

    @pytest.mark.asyncio
    async def test_author_does_not_receipt_own_message(self, engine):
        message = await engine.create_message("user-a", text="mine")

        result = await engine.mark_read("user-a", message.id)

        assert result.changed is False
        assert result.message.read_by == []

    @pytest.mark.asyncio
    async def test_mark_delivered(self, engine, store):
        message = await engine.create_message("user-a", text="hi")

        updated = await engine.mark_delivered([message.id])

        assert updated == 1
        assert store.get(message.id).status == MessageStatus.DELIVERED


class TestSystemMessages:

    @pytest.mark.asyncio
    async def test_admin_posts_system_message(self, engine):
        payload = MemberJoined(user_id="user-c", display_name="Carol")

        message = await engine.post_system_message("user-admin", None, payload)

        assert message.message_type == MessageKind.SYSTEM
        assert message.user.id == "system"
        assert message.text == "Carol joined the community"
        assert message.system.kind == "member_joined"

    @pytest.mark.asyncio
    async def test_event_announcement_text(self, engine):
        payload = EventAnnounced(event_id="evt-1", title="Hack Night")

        message = await engine.post_system_message("user-admin", "events", payload)

        assert message.channel == "events"
        assert message.text == "New event: Hack Night"

    @pytest.mark.asyncio
    async def test_member_cannot_post_system_message(self, engine):
        with pytest.raises(NotOwner):
            await engine.post_system_message(
                "user-a", None, MemberJoined(user_id="user-a", display_name="A")
            )


class TestNotifications:

    @pytest.mark.asyncio
    async def test_create_dispatches_push_to_everyone_else(self, engine, dispatcher, push_client):
        dispatcher.start()
        try:
            await engine.create_message("user-a", text="dinner?")
            await dispatcher.drain()
        finally:
            await dispatcher.stop()

        tokens = [token for call in push_client.calls for token in call["tokens"]]
        assert sorted(tokens) == ["token-admin", "token-b"]
        assert push_client.calls[0]["title"] == "A"
        assert push_client.calls[0]["body"] == "dinner?"

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_send(self, store, directory, rate_limiter):
        class ExplodingDispatcher:
            def dispatch(self, notification):
                raise RuntimeError("queue gone")

        engine = MessageLifecycleEngine(store, directory, rate_limiter, ExplodingDispatcher())

        message = await engine.create_message("user-a", text="still works")

        assert store.get(message.id) is not None

    @pytest.mark.asyncio
    async def test_reply_notification_body(self, engine):
        target = await engine.create_message("user-b", text="lunch at noon")
        reply = await engine.create_message("user-a", text="z" * 200, reply_to=target.id)

        body = notification_body(reply)

        assert body.startswith("Replied to B: zzz")
        assert body.endswith("...")
        assert len(body) == 150

    @pytest.mark.asyncio
    async def test_media_only_notification_body(self, engine):
        message = await engine.create_message(
            "user-a",
            images=[MediaItem(url="https://cdn.example.com/a.jpg"), MediaItem(url="https://cdn.example.com/b.jpg")],
        )

        assert notification_body(message) == "sent 2 image(s)"
