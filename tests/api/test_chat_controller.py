"""
API tests for the chat controller.

Exercises the HTTP surface end to end against SQLite with a scripted token
producer standing in for the model.
"""

import uuid
from unittest.mock import patch

import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy import func, select

from app.core.config import settings
from app.domains.chat import frames
from app.domains.chat.entitlements import ENTITLEMENTS_BY_USER_TYPE, Entitlements
from models import Chat, Message, UserType
from tests.factories import ChatFactory, MessageFactory, StreamFactory, chat_turn_payload, persist


def frame_codes(body: str) -> list[str]:
    return [frames.parse(line)[0] for line in body.splitlines(keepends=True)]


class TestPostChat:
    """Test cases for POST /api/chat."""

    @pytest.mark.asyncio
    async def test_hello_turn(self, authenticated_client: AsyncClient, test_session_factory):
        """Test a first message streams a reply and stores both messages."""
        payload = chat_turn_payload(text="hello")

        response = await authenticated_client.post("/api/chat", json=payload)

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["x-vercel-ai-data-stream"] == "v1"
        assert response.headers["content-type"].startswith("text/plain")
        assert frame_codes(response.text) == ["f", "0", "0", "e", "d"]
        assert '0:"Hello"\n' in response.text

        async with test_session_factory() as session:
            chat = await session.get(Chat, uuid.UUID(payload["id"]))
            messages = (
                await session.execute(select(Message).where(Message.chat_id == chat.id).order_by(Message.created_at))
            ).scalars().all()
        assert chat.title == "hello"
        assert [(m.role, m.text_content) for m in messages] == [("user", "hello"), ("assistant", "Hello there")]

    @pytest.mark.asyncio
    async def test_duplicate_message_id(self, authenticated_client: AsyncClient, test_session_factory):
        """Test resubmitting the same message stores the user message once."""
        payload = chat_turn_payload()

        first = await authenticated_client.post("/api/chat", json=payload)
        second = await authenticated_client.post("/api/chat", json=payload)

        assert first.status_code == status.HTTP_200_OK
        assert second.status_code == status.HTTP_200_OK
        async with test_session_factory() as session:
            user_messages = await session.scalar(
                select(func.count(Message.id)).where(
                    Message.chat_id == uuid.UUID(payload["id"]), Message.role == "user"
                )
            )
        assert user_messages == 1

    @pytest.mark.asyncio
    async def test_invalid_body(self, authenticated_client: AsyncClient, test_session_factory):
        """Test malformed bodies are rejected without touching storage."""
        payload = chat_turn_payload()
        payload["message"]["id"] = "not-a-uuid"

        response = await authenticated_client.post("/api/chat", json=payload)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "bad_request:api"
        async with test_session_factory() as session:
            assert await session.scalar(select(func.count(Chat.id))) == 0

    @pytest.mark.asyncio
    async def test_message_too_long(self, authenticated_client: AsyncClient, test_session_factory):
        """Test messages over the configured length are rejected before storage."""
        too_long = "x" * (settings.max_message_length + 1)

        response = await authenticated_client.post("/api/chat", json=chat_turn_payload(text=too_long))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "bad_request:api"
        async with test_session_factory() as session:
            assert await session.scalar(select(func.count(Message.id))) == 0

    @pytest.mark.asyncio
    async def test_message_at_length_limit(self, authenticated_client: AsyncClient):
        """Test a message exactly at the configured length is accepted."""
        text = "x" * settings.max_message_length

        response = await authenticated_client.post("/api/chat", json=chat_turn_payload(text=text))

        assert response.status_code == status.HTTP_200_OK

    @pytest.mark.asyncio
    async def test_unknown_model_rejected(self, authenticated_client: AsyncClient):
        """Test only catalog models are accepted."""
        response = await authenticated_client.post(
            "/api/chat", json=chat_turn_payload(selectedChatModel="other-model")
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "bad_request:api"

    @pytest.mark.asyncio
    async def test_unauthorized(self, client: AsyncClient):
        """Test requests without a token are unauthorized."""
        response = await client.post("/api/chat", json=chat_turn_payload())

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "unauthorized:chat"

    @pytest.mark.asyncio
    async def test_rate_limited(self, authenticated_client: AsyncClient, test_db, test_user):
        """Test the quota is enforced before anything is streamed."""
        chat = await persist(test_db, ChatFactory.build(user_id=test_user.id))
        await persist(test_db, MessageFactory.build(chat_id=chat.id, role="user"))
        small = {UserType.REGULAR: Entitlements(max_messages_per_day=1, available_chat_model_ids=["chat-model"])}

        with patch.dict(ENTITLEMENTS_BY_USER_TYPE, small):
            response = await authenticated_client.post("/api/chat", json=chat_turn_payload(chat_id=chat.id))

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json() == {
            "code": "rate_limit:chat",
            "cause": "You have exceeded your maximum number of messages for the day.",
        }

    @pytest.mark.asyncio
    async def test_other_users_chat(self, authenticated_client: AsyncClient, test_db, test_user_2):
        """Test posting into someone else's chat is forbidden."""
        chat = await persist(test_db, ChatFactory.build(user_id=test_user_2.id))

        response = await authenticated_client.post("/api/chat", json=chat_turn_payload(chat_id=chat.id))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["code"] == "forbidden:chat"


class TestResumeChat:
    """Test cases for GET /api/chat."""

    @pytest.mark.asyncio
    async def test_nothing_to_resume(self, authenticated_client: AsyncClient, test_db, test_user):
        """Test 204 when resumable streams are disabled."""
        chat = await persist(test_db, ChatFactory.build(user_id=test_user.id))
        await persist(test_db, StreamFactory.build(chat_id=chat.id, user_id=test_user.id))

        response = await authenticated_client.get("/api/chat", params={"chatId": str(chat.id)})

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert response.content == b""

    @pytest.mark.asyncio
    async def test_missing_chat_id(self, authenticated_client: AsyncClient):
        """Test chatId is required."""
        response = await authenticated_client.get("/api/chat")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "bad_request:api"

    @pytest.mark.asyncio
    async def test_unknown_chat(self, authenticated_client: AsyncClient):
        """Test resuming an unknown chat is not found."""
        response = await authenticated_client.get("/api/chat", params={"chatId": str(uuid.uuid4())})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "not_found:chat"

    @pytest.mark.asyncio
    async def test_other_users_private_chat(self, authenticated_client: AsyncClient, test_db, test_user_2):
        """Test non-owners cannot resume private chats."""
        chat = await persist(test_db, ChatFactory.build(user_id=test_user_2.id))

        response = await authenticated_client.get("/api/chat", params={"chatId": str(chat.id)})

        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestDeleteChat:
    """Test cases for DELETE /api/chat."""

    @pytest.mark.asyncio
    async def test_delete_own_chat(self, authenticated_client: AsyncClient, test_db, test_user, test_session_factory):
        """Test the owner deletes a chat and receives it back."""
        chat = await persist(test_db, ChatFactory.build(user_id=test_user.id, title="Old chat"))
        await persist(test_db, MessageFactory.build(chat_id=chat.id))

        response = await authenticated_client.delete("/api/chat", params={"id": str(chat.id)})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["id"] == str(chat.id)
        assert data["title"] == "Old chat"
        assert data["userId"] == str(test_user.id)
        async with test_session_factory() as session:
            assert await session.get(Chat, chat.id) is None

    @pytest.mark.asyncio
    async def test_delete_missing_chat(self, authenticated_client: AsyncClient):
        """Test deleting an unknown chat is not found."""
        response = await authenticated_client.delete("/api/chat", params={"id": str(uuid.uuid4())})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "not_found:chat"

    @pytest.mark.asyncio
    async def test_delete_other_users_chat(self, authenticated_client: AsyncClient, test_db, test_user_2):
        """Test deleting someone else's chat is forbidden."""
        chat = await persist(test_db, ChatFactory.build(user_id=test_user_2.id))

        response = await authenticated_client.delete("/api/chat", params={"id": str(chat.id)})

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["code"] == "forbidden:chat"


class TestChatHistory:
    """Test cases for GET /api/chat/{chat_id}/history."""

    @pytest.mark.asyncio
    async def test_history_after_turn(self, authenticated_client: AsyncClient):
        """Test a completed turn is visible in the history."""
        payload = chat_turn_payload(text="hi there")
        await authenticated_client.post("/api/chat", json=payload)

        response = await authenticated_client.get(f"/api/chat/{payload['id']}/history")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["messageCount"] == 2
        assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
        assert data["chat"]["title"] == "hi there"
