import pytest
from sqlalchemy import func, select

from app.models.dm import DmMessage, DmRequest
from tests.helpers import signup


async def send(client, sender, to_user_id, content="hey there"):
    return await client.post(
        f"/dm/{to_user_id}/messages",
        json={"content": content},
        headers=sender["headers"],
    )


async def first_request_id(client, recipient):
    response = await client.get("/dm/requests", headers=recipient["headers"])
    assert response.status_code == 200
    return response.json()["requests"][0]["id"]


@pytest.mark.integration
class TestSendMessageAPI:
    @pytest.mark.asyncio
    async def test_first_message_creates_request(self, client):
        # Arrange
        bob = await signup(client, "tp-bob")
        alice = await signup(client, "tp-alice")

        # Act
        response = await send(client, bob, alice["user_id"])

        # Assert
        assert response.status_code == 201
        body = response.json()
        assert body["result"] == "request_created"
        assert body["request"]["from_user_id"] == bob["user_id"]
        assert body["request"]["status"] == "pending"
        assert body["chat_id"] is None

    @pytest.mark.asyncio
    async def test_second_message_while_pending_is_rejected(self, client):
        bob = await signup(client, "tp-bob")
        alice = await signup(client, "tp-alice")
        await send(client, bob, alice["user_id"])

        response = await send(client, bob, alice["user_id"], "hello??")

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "request_pending"
        assert error["message"] == "You can send one message until they respond"

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        alice = await signup(client, "tp-alice")

        response = await client.post(f"/dm/{alice['user_id']}/messages", json={"content": "hi"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_FAILED"

    @pytest.mark.asyncio
    async def test_unknown_recipient(self, client):
        bob = await signup(client, "tp-bob")

        response = await send(client, bob, "no-such-user")

        assert response.status_code == 404


@pytest.mark.integration
class TestRequestLifecycleAPI:
    @pytest.mark.asyncio
    async def test_allow_opens_chat(self, client):
        # Arrange
        bob = await signup(client, "tp-bob")
        alice = await signup(client, "tp-alice")
        await send(client, bob, alice["user_id"], "love your trends")
        request_id = await first_request_id(client, alice)

        # Act
        response = await client.post(f"/dm/requests/{request_id}/allow", headers=alice["headers"])

        # Assert
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "accepted"
        assert body["message"]["content"] == "love your trends"
        assert body["message"]["sender_id"] == bob["user_id"]

        reply = await send(client, alice, bob["user_id"], "thanks!")
        assert reply.status_code == 201
        assert reply.json()["result"] == "sent"
        assert reply.json()["chat_id"] == body["chat_id"]

        messages = await client.get(f"/dm/chats/{body['chat_id']}/messages", headers=bob["headers"])
        assert [m["content"] for m in messages.json()["messages"]] == ["love your trends", "thanks!"]

    @pytest.mark.asyncio
    async def test_second_response_conflicts(self, client):
        bob = await signup(client, "tp-bob")
        alice = await signup(client, "tp-alice")
        await send(client, bob, alice["user_id"])
        request_id = await first_request_id(client, alice)
        await client.post(f"/dm/requests/{request_id}/allow", headers=alice["headers"])

        response = await client.post(f"/dm/requests/{request_id}/dismiss", headers=alice["headers"])

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "STATE_CONFLICT"

    @pytest.mark.asyncio
    async def test_only_recipient_may_respond(self, client):
        bob = await signup(client, "tp-bob")
        alice = await signup(client, "tp-alice")
        carol = await signup(client, "tp-carol")
        await send(client, bob, alice["user_id"])
        request_id = await first_request_id(client, alice)

        by_sender = await client.post(f"/dm/requests/{request_id}/allow", headers=bob["headers"])
        by_stranger = await client.post(f"/dm/requests/{request_id}/block", headers=carol["headers"])

        assert by_sender.status_code == 404
        assert by_stranger.status_code == 404

    @pytest.mark.asyncio
    async def test_dismiss_blocks_sender_until_cooldown_passes(self, client, clock):
        # Arrange
        bob = await signup(client, "tp-bob")
        alice = await signup(client, "tp-alice")
        await send(client, bob, alice["user_id"])
        request_id = await first_request_id(client, alice)

        # Act
        dismissed = await client.post(f"/dm/requests/{request_id}/dismiss", headers=alice["headers"])
        blocked = await send(client, bob, alice["user_id"])

        # Assert
        assert dismissed.status_code == 200
        assert dismissed.json()["block_type"] == "temporary"
        assert dismissed.json()["blocked_user_id"] == bob["user_id"]
        assert dismissed.json()["expires_at"] is not None
        assert blocked.status_code == 403
        assert blocked.json()["error"]["code"] == "blocked_temporary"
        assert "expires_at" in blocked.json()["error"]["details"]

        clock.advance(hours=72)
        retry = await send(client, bob, alice["user_id"])
        assert retry.status_code == 201
        assert retry.json()["result"] == "request_created"

    @pytest.mark.asyncio
    async def test_block_is_permanent(self, client, clock):
        bob = await signup(client, "tp-bob")
        alice = await signup(client, "tp-alice")
        await send(client, bob, alice["user_id"])
        request_id = await first_request_id(client, alice)

        blocked = await client.post(f"/dm/requests/{request_id}/block", headers=alice["headers"])
        clock.advance(days=365)
        from_bob = await send(client, bob, alice["user_id"])
        from_alice = await send(client, alice, bob["user_id"])

        assert blocked.json()["block_type"] == "permanent"
        assert blocked.json()["expires_at"] is None
        assert from_bob.json()["error"]["code"] == "blocked_permanent"
        assert from_alice.json()["error"]["code"] == "blocked_permanent"


@pytest.mark.integration
class TestChatAPI:
    async def _open_chat(self, client):
        bob = await signup(client, "tp-bob")
        alice = await signup(client, "tp-alice")
        await send(client, bob, alice["user_id"], "first")
        request_id = await first_request_id(client, alice)
        allowed = await client.post(f"/dm/requests/{request_id}/allow", headers=alice["headers"])
        return bob, alice, allowed.json()["chat_id"]

    @pytest.mark.asyncio
    async def test_chat_list_and_unread(self, client):
        bob, alice, chat_id = await self._open_chat(client)
        await send(client, bob, alice["user_id"], "second")

        chats = await client.get("/dm/chats", headers=alice["headers"])
        unread = await client.get("/dm/unread-count", headers=alice["headers"])

        assert [c["id"] for c in chats.json()["chats"]] == [chat_id]
        assert chats.json()["chats"][0]["other_user"]["id"] == bob["user_id"]
        assert chats.json()["chats"][0]["last_message"]["content"] == "second"
        assert unread.json() == {"total": 2, "chats_with_unread": 1, "pending_requests": 0}

        marked = await client.post(f"/dm/chats/{chat_id}/read", headers=alice["headers"])
        assert marked.json()["marked"] == 2
        unread = await client.get("/dm/unread-count", headers=alice["headers"])
        assert unread.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_status_after_block_from_chat(self, client):
        bob, alice, chat_id = await self._open_chat(client)

        before = await client.get(f"/dm/chats/{chat_id}/status", headers=bob["headers"])
        blocked = await client.post(f"/dm/chats/{chat_id}/block", headers=alice["headers"])
        after = await client.get(f"/dm/chats/{chat_id}/status", headers=bob["headers"])
        attempt = await send(client, bob, alice["user_id"])

        assert before.json()["is_restricted"] is False
        assert blocked.json()["block_type"] == "permanent"
        assert after.json()["is_blocked"] is True
        assert after.json()["block_type"] == "permanent"
        assert attempt.status_code == 403
        assert attempt.json()["error"]["code"] == "blocked_permanent"

    @pytest.mark.asyncio
    async def test_non_participant_cannot_read_chat(self, client):
        _, _, chat_id = await self._open_chat(client)
        carol = await signup(client, "tp-carol")

        response = await client.get(f"/dm/chats/{chat_id}/messages", headers=carol["headers"])

        assert response.status_code == 404


@pytest.mark.integration
class TestMediaMessageAPI:
    @pytest.mark.asyncio
    async def test_upload_creates_media_request(self, client, media_store):
        bob = await signup(client, "tp-bob")
        alice = await signup(client, "tp-alice")

        response = await client.post(
            f"/dm/{alice['user_id']}/messages/upload",
            files={"file": ("pic.png", b"\x89PNG", "image/png")},
            headers=bob["headers"],
        )

        assert response.status_code == 201
        request = response.json()["request"]
        assert request["message_type"] == "image"
        assert request["file_url"] == media_store.uploads[0].url

    @pytest.mark.asyncio
    async def test_failed_upload_writes_nothing(self, client, media_store, db):
        # Arrange
        bob = await signup(client, "tp-bob")
        alice = await signup(client, "tp-alice")
        media_store.fail = True

        # Act
        response = await client.post(
            f"/dm/{alice['user_id']}/messages/upload",
            files={"file": ("clip.mp4", b"0000", "video/mp4")},
            headers=bob["headers"],
        )

        # Assert
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "upload_failed"
        requests = (await db.execute(select(func.count()).select_from(DmRequest))).scalar_one()
        messages = (await db.execute(select(func.count()).select_from(DmMessage))).scalar_one()
        assert (requests, messages) == (0, 0)

    @pytest.mark.asyncio
    async def test_rejected_send_discards_uploaded_media(self, client, media_store):
        bob = await signup(client, "tp-bob")
        alice = await signup(client, "tp-alice")
        await send(client, bob, alice["user_id"])

        response = await client.post(
            f"/dm/{alice['user_id']}/messages/upload",
            files={"file": ("doc.pdf", b"%PDF", "application/pdf")},
            headers=bob["headers"],
        )

        assert response.status_code == 403
        assert media_store.deleted == [media_store.uploads[0].key]

    @pytest.mark.asyncio
    async def test_upload_to_unknown_user_discards_media(self, client, media_store):
        # Arrange
        bob = await signup(client, "tp-bob")

        # Act
        response = await client.post(
            "/dm/no-such-user/messages/upload",
            files={"file": ("pic.png", b"\x89PNG", "image/png")},
            headers=bob["headers"],
        )

        # Assert
        assert response.status_code == 404
        assert media_store.deleted == [media_store.uploads[0].key]

    @pytest.mark.asyncio
    async def test_upload_to_self_discards_media(self, client, media_store):
        # Arrange
        bob = await signup(client, "tp-bob")

        # Act
        response = await client.post(
            f"/dm/{bob['user_id']}/messages/upload",
            files={"file": ("pic.png", b"\x89PNG", "image/png")},
            headers=bob["headers"],
        )

        # Assert
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert media_store.deleted == [media_store.uploads[0].key]
