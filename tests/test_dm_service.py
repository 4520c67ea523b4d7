from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.errors import (
    BlockedError,
    NotFoundError,
    RateLimitedError,
    StateConflictError,
    ValidationError,
)
from app.models.dm import DmBlock, DmChat, DmMessage, DmRequest, canonical_pair, pending_key_for
from app.services.dm import (
    BLOCKED_PERMANENT,
    BLOCKED_TEMPORARY,
    REQUEST_PENDING,
    Attachment,
    DmService,
    Rejected,
    RelationshipState,
    RequestCreated,
    Sent,
    raise_for_rejection,
)


async def count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestFirstContact:
    @pytest.mark.asyncio
    async def test_hello_scenario(self, dm_service: DmService, db, alice, bob):
        # Act: B writes to A for the first time
        result = await dm_service.send_message(bob.id, alice.id, "hello")

        # Assert: pending request, nothing else
        assert isinstance(result, RequestCreated)
        assert result.request.first_message == "hello"
        assert await dm_service.resolve_state(alice.id, bob.id) == RelationshipState.PENDING_REQUEST
        assert await count(db, DmChat) == 0
        assert await count(db, DmMessage) == 0

        # Act: A allows
        allowed = await dm_service.allow_request(result.request.id, alice.id)

        # Assert: chat exists with "hello" from B first
        assert await dm_service.resolve_state(alice.id, bob.id) == RelationshipState.ALLOWED
        messages = await dm_service.list_messages(allowed.chat.id, alice.id)
        assert len(messages) == 1
        assert messages[0].content == "hello"
        assert messages[0].sender_id == bob.id
        assert messages[0].seq == 1
        assert allowed.request.status == "accepted"

    @pytest.mark.asyncio
    async def test_second_send_while_pending_is_rate_limited(self, dm_service: DmService, db, alice, bob):
        await dm_service.send_message(bob.id, alice.id, "hello")

        result = await dm_service.send_message(bob.id, alice.id, "are you there?")

        assert isinstance(result, Rejected)
        assert result.reason == REQUEST_PENDING
        assert await count(db, DmRequest) == 1
        with pytest.raises(RateLimitedError) as exc:
            raise_for_rejection(result)
        assert exc.value.code == "request_pending"
        assert exc.value.status_code == 403

    @pytest.mark.asyncio
    async def test_reply_to_pending_request_is_implicit_allow(self, dm_service: DmService, db, alice, bob):
        # Arrange
        created = await dm_service.send_message(bob.id, alice.id, "hello")

        # Act
        result = await dm_service.send_message(alice.id, bob.id, "hi bob")

        # Assert
        assert isinstance(result, Sent)
        assert result.accepted_request.id == created.request.id
        messages = await dm_service.list_messages(result.chat.id, alice.id)
        assert [(m.sender_id, m.content) for m in messages] == [(bob.id, "hello"), (alice.id, "hi bob")]
        request = await db.get(DmRequest, created.request.id)
        assert request.status == "accepted"
        assert request.pending_key is None

    @pytest.mark.asyncio
    async def test_attachment_is_replayed_on_allow(self, dm_service: DmService, alice, bob):
        created = await dm_service.send_message(
            bob.id, alice.id, "", attachment=Attachment(url="https://media.test/a.png", kind="image")
        )

        allowed = await dm_service.allow_request(created.request.id, alice.id)

        assert allowed.message.message_type == "image"
        assert allowed.message.file_url == "https://media.test/a.png"

    @pytest.mark.asyncio
    async def test_self_send_is_rejected(self, dm_service: DmService, alice):
        with pytest.raises(ValidationError):
            await dm_service.send_message(alice.id, alice.id, "me")

    @pytest.mark.asyncio
    async def test_unknown_recipient(self, dm_service: DmService, alice):
        with pytest.raises(NotFoundError):
            await dm_service.send_message(alice.id, "missing-user", "hello")

    @pytest.mark.asyncio
    async def test_empty_message_is_rejected(self, dm_service: DmService, alice, bob):
        with pytest.raises(ValidationError):
            await dm_service.send_message(bob.id, alice.id, "   ")


class TestPairInvariant:
    @pytest.mark.asyncio
    async def test_pending_key_is_unique(self, db, alice, bob):
        # Arrange
        key = pending_key_for(bob.id, alice.id)
        db.add(DmRequest(from_user_id=bob.id, to_user_id=alice.id, first_message="a", pending_key=key))
        await db.commit()

        # Act & Assert
        db.add(DmRequest(from_user_id=bob.id, to_user_id=alice.id, first_message="b", pending_key=key))
        with pytest.raises(IntegrityError):
            await db.commit()
        await db.rollback()

    @pytest.mark.asyncio
    async def test_chat_pair_is_unique(self, db, alice, bob):
        user1, user2 = canonical_pair(alice.id, bob.id)
        db.add(DmChat(user1_id=user1, user2_id=user2))
        await db.commit()

        db.add(DmChat(user1_id=user1, user2_id=user2))
        with pytest.raises(IntegrityError):
            await db.commit()
        await db.rollback()

    @pytest.mark.asyncio
    async def test_allow_leaves_no_pending_request(self, dm_service: DmService, db, alice, bob):
        created = await dm_service.send_message(bob.id, alice.id, "hello")
        await dm_service.allow_request(created.request.id, alice.id)

        pending = (
            await db.execute(select(func.count()).select_from(DmRequest).where(DmRequest.status == "pending"))
        ).scalar_one()
        assert pending == 0
        assert await count(db, DmChat) == 1

    @pytest.mark.asyncio
    async def test_block_from_chat_rejects_pending_requests(self, dm_service: DmService, db, alice, bob):
        # Arrange: a chat plus a stray pending row for the pair
        chat = await dm_service.open_chat(alice.id, bob.id)
        await db.commit()
        db.add(
            DmRequest(
                from_user_id=bob.id,
                to_user_id=alice.id,
                first_message="x",
                pending_key=pending_key_for(bob.id, alice.id),
            )
        )
        await db.commit()

        # Act
        await dm_service.block_from_chat(chat.id, alice.id)

        # Assert
        statuses = (await db.execute(select(DmRequest.status, DmRequest.pending_key))).all()
        assert statuses == [("rejected", None)]


class TestDismiss:
    @pytest.mark.asyncio
    async def test_dismiss_sets_block_exactly_72_hours_out(self, dm_service: DmService, clock, alice, bob):
        created = await dm_service.send_message(bob.id, alice.id, "hello")
        dismissed_at = clock()

        block = await dm_service.dismiss_request(created.request.id, alice.id)

        assert block.block_type == "temporary"
        assert block.blocker_id == alice.id
        assert block.blocked_id == bob.id
        assert block.expires_at == dismissed_at + timedelta(hours=72)

    @pytest.mark.asyncio
    async def test_send_one_second_before_expiry_fails(self, dm_service: DmService, clock, alice, bob):
        created = await dm_service.send_message(bob.id, alice.id, "hello")
        block = await dm_service.dismiss_request(created.request.id, alice.id)

        clock.now = block.expires_at - timedelta(seconds=1)
        result = await dm_service.send_message(bob.id, alice.id, "hello again")

        assert isinstance(result, Rejected)
        assert result.reason == BLOCKED_TEMPORARY
        assert result.expires_at == block.expires_at
        with pytest.raises(BlockedError) as exc:
            raise_for_rejection(result)
        assert exc.value.code == "blocked_temporary"

    @pytest.mark.asyncio
    async def test_send_one_second_after_expiry_creates_new_request(self, dm_service: DmService, clock, alice, bob):
        created = await dm_service.send_message(bob.id, alice.id, "hello")
        block = await dm_service.dismiss_request(created.request.id, alice.id)

        clock.now = block.expires_at + timedelta(seconds=1)
        result = await dm_service.send_message(bob.id, alice.id, "hello again")

        assert isinstance(result, RequestCreated)
        assert result.request.id != created.request.id
        assert result.request.status == "pending"
        assert await dm_service.resolve_state(alice.id, bob.id) == RelationshipState.PENDING_REQUEST

    @pytest.mark.asyncio
    async def test_temporary_block_only_mutes_dismissed_sender(self, dm_service: DmService, alice, bob):
        created = await dm_service.send_message(bob.id, alice.id, "hello")
        await dm_service.dismiss_request(created.request.id, alice.id)

        result = await dm_service.send_message(alice.id, bob.id, "actually, hi")

        assert isinstance(result, RequestCreated)
        assert result.request.from_user_id == alice.id

    @pytest.mark.asyncio
    async def test_reply_to_dismissers_own_request_is_delivered(self, dm_service: DmService, db, alice, bob):
        # Arrange: alice dismisses bob, then writes to him herself
        created = await dm_service.send_message(bob.id, alice.id, "hello")
        await dm_service.dismiss_request(created.request.id, alice.id)
        opened = await dm_service.send_message(alice.id, bob.id, "actually, hi")

        # Act
        reply = await dm_service.send_message(bob.id, alice.id, "hi back")

        # Assert
        assert isinstance(reply, Sent)
        assert reply.accepted_request.id == opened.request.id
        messages = await dm_service.list_messages(reply.chat.id, bob.id)
        assert [m.content for m in messages] == ["actually, hi", "hi back"]
        assert await count(db, DmBlock) == 0
        assert await dm_service.resolve_state(alice.id, bob.id) == RelationshipState.ALLOWED

    @pytest.mark.asyncio
    async def test_dismiss_twice_upserts_single_block(self, dm_service: DmService, db, clock, alice, bob):
        first = await dm_service.send_message(bob.id, alice.id, "hello")
        await dm_service.dismiss_request(first.request.id, alice.id)
        clock.advance(hours=73)
        second = await dm_service.send_message(bob.id, alice.id, "hello again")

        block = await dm_service.dismiss_request(second.request.id, alice.id)

        assert await count(db, DmBlock) == 1
        assert block.expires_at == clock() + timedelta(hours=72)


class TestPermanentBlock:
    @pytest.mark.asyncio
    async def test_block_request_blocks_both_directions(self, dm_service: DmService, clock, alice, bob):
        created = await dm_service.send_message(bob.id, alice.id, "hello")

        block = await dm_service.block_request(created.request.id, alice.id)
        clock.advance(days=365)

        assert block.block_type == "permanent"
        assert block.expires_at is None
        from_bob = await dm_service.send_message(bob.id, alice.id, "please")
        from_alice = await dm_service.send_message(alice.id, bob.id, "no")
        assert isinstance(from_bob, Rejected) and from_bob.reason == BLOCKED_PERMANENT
        assert isinstance(from_alice, Rejected) and from_alice.reason == BLOCKED_PERMANENT
        assert await dm_service.resolve_state(alice.id, bob.id) == RelationshipState.PERMANENTLY_BLOCKED

    @pytest.mark.asyncio
    async def test_block_from_chat_keeps_history(self, dm_service: DmService, db, alice, bob):
        created = await dm_service.send_message(bob.id, alice.id, "hello")
        allowed = await dm_service.allow_request(created.request.id, alice.id)

        await dm_service.block_from_chat(allowed.chat.id, bob.id)

        result = await dm_service.send_message(alice.id, bob.id, "hey?")
        assert isinstance(result, Rejected) and result.reason == BLOCKED_PERMANENT
        assert await count(db, DmChat) == 1
        assert len(await dm_service.list_messages(allowed.chat.id, alice.id)) == 1

    @pytest.mark.asyncio
    async def test_block_from_chat_requires_participant(self, dm_service: DmService, alice, bob, carol):
        chat = await dm_service.open_chat(alice.id, bob.id)

        with pytest.raises(NotFoundError):
            await dm_service.block_from_chat(chat.id, carol.id)


class TestRequestTransitions:
    @pytest.mark.asyncio
    async def test_allow_then_dismiss_conflicts(self, dm_service: DmService, alice, bob):
        created = await dm_service.send_message(bob.id, alice.id, "hello")
        await dm_service.allow_request(created.request.id, alice.id)

        with pytest.raises(StateConflictError) as exc:
            await dm_service.dismiss_request(created.request.id, alice.id)
        assert exc.value.status_code == 409

    @pytest.mark.asyncio
    async def test_racing_sessions_exactly_one_wins(self, session_factory, clock, alice, bob):
        # Arrange: both sessions have loaded the request while it is pending
        async with session_factory() as s1, session_factory() as s2:
            first = DmService(s1, clock=clock)
            second = DmService(s2, clock=clock)
            created = await first.send_message(bob.id, alice.id, "hello")
            stale = await s2.get(DmRequest, created.request.id)
            assert stale.status == "pending"

            # Act
            await first.allow_request(created.request.id, alice.id)
            with pytest.raises(StateConflictError):
                await second.dismiss_request(created.request.id, alice.id)

        # Assert
        async with session_factory() as check:
            request = await check.get(DmRequest, created.request.id)
            blocks = (await check.execute(select(func.count()).select_from(DmBlock))).scalar_one()
        assert request.status == "accepted"
        assert blocks == 0

    @pytest.mark.asyncio
    async def test_reply_after_concurrent_allow_is_still_delivered(
        self, session_factory, clock, monkeypatch, alice, bob
    ):
        # Arrange: alice replies on one device while allowing on another
        async with session_factory() as s1, session_factory() as s2:
            replying = DmService(s1, clock=clock)
            other_device = DmService(s2, clock=clock)
            created = await replying.send_message(bob.id, alice.id, "hello")
            request_id = created.request.id
            resolve = replying._resolve_request
            raced = []

            async def allow_elsewhere_first(request, status, now):
                if not raced:
                    raced.append(request.id)
                    await other_device.allow_request(request.id, alice.id)
                await resolve(request, status, now)

            monkeypatch.setattr(replying, "_resolve_request", allow_elsewhere_first)

            # Act
            reply = await replying.send_message(alice.id, bob.id, "hi bob")

        # Assert
        assert raced == [request_id]
        assert isinstance(reply, Sent)
        assert reply.accepted_request is None
        async with session_factory() as check:
            messages = await DmService(check, clock=clock).list_messages(reply.chat.id, alice.id)
            chats = (await check.execute(select(func.count()).select_from(DmChat))).scalar_one()
        assert [(m.seq, m.content) for m in messages] == [(1, "hello"), (2, "hi bob")]
        assert chats == 1

    @pytest.mark.asyncio
    async def test_only_recipient_can_act(self, dm_service: DmService, alice, bob, carol):
        created = await dm_service.send_message(bob.id, alice.id, "hello")

        with pytest.raises(NotFoundError):
            await dm_service.allow_request(created.request.id, carol.id)
        with pytest.raises(NotFoundError):
            await dm_service.block_request(created.request.id, bob.id)

    @pytest.mark.asyncio
    async def test_unknown_request(self, dm_service: DmService, alice):
        with pytest.raises(NotFoundError):
            await dm_service.dismiss_request("nope", alice.id)


class TestChatStatus:
    @pytest.mark.asyncio
    async def test_open_chat_is_unrestricted(self, dm_service: DmService, alice, bob):
        chat = await dm_service.open_chat(alice.id, bob.id)

        status = await dm_service.chat_status(chat.id, alice.id)

        assert status.is_restricted is False
        assert status.is_blocked is False
        assert status.block_type is None
        assert status.was_dismissed is False
        assert status.has_pending_request is False

    @pytest.mark.asyncio
    async def test_active_temporary_block_shows_as_dismissed(self, dm_service: DmService, db, clock, alice, bob):
        # Arrange
        chat = await dm_service.open_chat(alice.id, bob.id)
        expires = clock() + timedelta(hours=72)
        db.add(DmBlock(blocker_id=alice.id, blocked_id=bob.id, block_type="temporary", expires_at=expires))
        await db.commit()

        # Act
        for_bob = await dm_service.chat_status(chat.id, bob.id)
        for_alice = await dm_service.chat_status(chat.id, alice.id)
        clock.advance(hours=72)
        after_expiry = await dm_service.chat_status(chat.id, bob.id)

        # Assert
        assert for_bob.was_dismissed is True
        assert for_bob.is_blocked is True
        assert for_bob.is_restricted is True
        assert for_bob.block_type == "temporary"
        assert for_bob.block_expires_at == expires
        assert for_alice.is_blocked is False
        assert after_expiry.is_blocked is False
        assert after_expiry.was_dismissed is False

    @pytest.mark.asyncio
    async def test_permanent_block_visible_to_both(self, dm_service: DmService, alice, bob):
        chat = await dm_service.open_chat(alice.id, bob.id)
        await dm_service.block_from_chat(chat.id, alice.id)

        for participant in (alice, bob):
            status = await dm_service.chat_status(chat.id, participant.id)
            assert status.is_blocked is True
            assert status.block_type == "permanent"
            assert status.block_expires_at is None

    @pytest.mark.asyncio
    async def test_status_of_foreign_chat(self, dm_service: DmService, alice, bob, carol):
        chat = await dm_service.open_chat(alice.id, bob.id)

        with pytest.raises(NotFoundError):
            await dm_service.chat_status(chat.id, carol.id)


class TestInbox:
    @pytest.mark.asyncio
    async def test_pending_requests_listed_for_recipient(self, dm_service: DmService, alice, bob, carol):
        await dm_service.send_message(bob.id, alice.id, "from bob")
        await dm_service.send_message(carol.id, alice.id, "from carol")

        rows = await dm_service.list_pending_requests(alice.id)

        assert {sender.username for _, sender in rows} == {"tp-bob", "tp-carol"}
        assert await dm_service.list_pending_requests(bob.id) == []

    @pytest.mark.asyncio
    async def test_unread_counts_and_mark_read(self, dm_service: DmService, clock, alice, bob, carol):
        # Arrange
        created = await dm_service.send_message(bob.id, alice.id, "hello")
        allowed = await dm_service.allow_request(created.request.id, alice.id)
        await dm_service.send_message(bob.id, alice.id, "how are you")
        await dm_service.send_message(carol.id, alice.id, "hey")

        # Act
        summary = await dm_service.unread_summary(alice.id)
        chats = await dm_service.list_chats(alice.id)

        # Assert
        assert summary.total == 2
        assert summary.chats_with_unread == 1
        assert summary.pending_requests == 1
        assert len(chats) == 1
        assert chats[0].unread_count == 2
        assert chats[0].other_user.id == bob.id
        assert chats[0].last_message.content == "how are you"

        marked = await dm_service.mark_read(allowed.chat.id, alice.id)
        assert marked == 2
        assert (await dm_service.unread_summary(alice.id)).total == 0
        chat = (await dm_service.get_chat(allowed.chat.id, alice.id)).chat
        last_read = chat.user1_last_read if chat.user1_id == alice.id else chat.user2_last_read
        assert last_read == clock()

    @pytest.mark.asyncio
    async def test_list_messages_pages_backwards(self, dm_service: DmService, alice, bob):
        chat = await dm_service.open_chat(alice.id, bob.id)
        await dm_service.db.commit()
        for i in range(5):
            await dm_service.send_message(alice.id, bob.id, f"m{i}")

        latest = await dm_service.list_messages(chat.id, bob.id, limit=2)
        older = await dm_service.list_messages(chat.id, bob.id, limit=2, before=latest[0].seq)

        assert [m.content for m in latest] == ["m3", "m4"]
        assert [m.content for m in older] == ["m1", "m2"]


class TestHousekeeping:
    @pytest.mark.asyncio
    async def test_purge_removes_only_expired_temporary_blocks(self, dm_service: DmService, db, clock, alice, bob, carol):
        # Arrange
        first = await dm_service.send_message(bob.id, alice.id, "hello")
        await dm_service.dismiss_request(first.request.id, alice.id)
        second = await dm_service.send_message(carol.id, alice.id, "hello")
        await dm_service.block_request(second.request.id, alice.id)

        # Act
        assert await dm_service.purge_expired_blocks() == 0
        clock.advance(hours=72)
        purged = await dm_service.purge_expired_blocks()

        # Assert
        assert purged == 1
        remaining = (await db.execute(select(DmBlock.block_type))).scalars().all()
        assert remaining == ["permanent"]

    @pytest.mark.asyncio
    async def test_expiry_does_not_depend_on_sweep(self, dm_service: DmService, clock, alice, bob):
        created = await dm_service.send_message(bob.id, alice.id, "hello")
        await dm_service.dismiss_request(created.request.id, alice.id)
        clock.advance(hours=80)

        assert await dm_service.resolve_state(alice.id, bob.id) == RelationshipState.NONE
