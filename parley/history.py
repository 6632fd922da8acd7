"""Chat history persisted with SQLAlchemy."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from parley.exceptions import ChatNotFoundError
from parley.log import logger
from parley.messages import Message, Usage
from parley.orm import Chat


class ChatRecord(BaseModel):
    chat_id: str
    title: str
    model: str | None = None
    use_responses_api: bool = False
    messages: list[Message] = Field(default_factory=list)
    usage: Usage | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_orm_chat(cls, chat: Chat, with_messages: bool = True) -> ChatRecord:
        return cls(
            chat_id=chat.chat_id,
            title=chat.title,
            model=chat.model,
            use_responses_api=chat.use_responses_api,
            messages=(chat.messages or []) if with_messages else [],
            usage=chat.usage,
            created_at=chat.created_at,
            updated_at=chat.updated_at,
        )


def total_usage(messages: Sequence[Message]) -> Usage | None:
    usages = [message.usage for message in messages if message.usage is not None]
    if not usages:
        return None
    return Usage(
        prompt_tokens=sum(u.prompt_tokens for u in usages),
        completion_tokens=sum(u.completion_tokens for u in usages),
        total_tokens=sum(u.total_tokens for u in usages),
    )


class ChatHistoryStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _get(self, chat_id: str) -> Chat:
        result = await self.session.execute(
            select(Chat).where(Chat.chat_id == chat_id).execution_options(populate_existing=True)
        )
        chat = result.scalars().one_or_none()
        if not chat:
            raise ChatNotFoundError(chat_id)
        return chat

    async def create_chat(self, model: str | None = None, use_responses_api: bool = False) -> str:
        chat = Chat(model=model, use_responses_api=use_responses_api, messages=[])
        self.session.add(chat)
        await self.session.commit()
        await self.session.refresh(chat)
        logger.info(f"Created chat {chat.chat_id}")
        return chat.chat_id

    async def load_chat(self, chat_id: str) -> ChatRecord:
        return ChatRecord.from_orm_chat(await self._get(chat_id))

    async def save_chat(self, chat_id: str, messages: Sequence[Message]) -> None:
        """Replace the stored messages. Streaming placeholders are dropped."""
        await self._get(chat_id)
        persisted = [message for message in messages if not message.is_streaming]
        usage = total_usage(persisted)
        await self.session.execute(
            update(Chat)
            .where(Chat.chat_id == chat_id)
            .values(
                messages=[message.model_dump(mode="json", exclude_none=True) for message in persisted],
                usage=usage.model_dump() if usage else None,
            )
        )
        await self.session.commit()

    async def update_title(self, chat_id: str, title: str) -> None:
        await self._get(chat_id)
        await self.session.execute(update(Chat).where(Chat.chat_id == chat_id).values(title=title))
        await self.session.commit()

    async def delete_chat(self, chat_id: str) -> None:
        await self._get(chat_id)
        await self.session.execute(delete(Chat).where(Chat.chat_id == chat_id))
        await self.session.commit()
        logger.info(f"Deleted chat {chat_id}")

    async def list_chats(self, limit: int = 20, offset: int = 0) -> list[ChatRecord]:
        result = await self.session.execute(
            select(Chat)
            .order_by(Chat.updated_at.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return [ChatRecord.from_orm_chat(chat, with_messages=False) for chat in result.scalars().all()]
