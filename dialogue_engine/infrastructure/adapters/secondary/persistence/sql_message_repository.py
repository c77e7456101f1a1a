"""
SQLAlchemy implementation of MessageRepository.

Every write opens its own short transaction so turns running on background
tasks never share a session.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dialogue_engine.domain.model.conversation import (
    ConversationContext,
    Message,
    MessageRole,
    MessageType,
)
from dialogue_engine.domain.ports.repositories import MessageRepository
from dialogue_engine.infrastructure.adapters.secondary.persistence.models import (
    ConversationContextRecord,
    MessageRecord,
)

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlMessageRepository(MessageRepository):
    """SQLAlchemy implementation of MessageRepository."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save_and_activate(self, messages: List[Message], context: ConversationContext) -> None:
        """Insert the messages and append them to the context's active list atomically."""
        async with self._session_factory() as session:
            async with session.begin():
                session.add_all([self._to_db(message) for message in messages])
                active_ids = await self._append_active(session, context, [m.id for m in messages])
        context.rewrite(active_ids, context.summary)
        logger.debug(
            f"[SqlMessageRepository] Saved {len(messages)} message(s) for session {context.session_id}"
        )

    async def update_message(self, message: Message) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                record = await session.get(MessageRecord, message.id)
                if record is None:
                    logger.warning(f"[SqlMessageRepository] Cannot update unknown message {message.id}")
                    return
                record.token_count = message.token_count
                record.body_token_count = message.body_token_count
                record.meta = dict(message.metadata)

    async def load_by_ids(self, message_ids: List[str]) -> List[Message]:
        if not message_ids:
            return []
        async with self._session_factory() as session:
            result = await session.execute(select(MessageRecord).where(MessageRecord.id.in_(message_ids)))
            by_id = {record.id: record for record in result.scalars().all()}
        missing = [message_id for message_id in message_ids if message_id not in by_id]
        if missing:
            logger.warning(f"[SqlMessageRepository] Skipping {len(missing)} unknown active message id(s)")
        return [self._to_domain(by_id[message_id]) for message_id in message_ids if message_id in by_id]

    async def list_session_messages(self, session_id: str, limit: int = 200) -> List[Message]:
        """All persisted messages of a session in creation order, including inactive ones."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(MessageRecord)
                .where(MessageRecord.session_id == session_id)
                .order_by(MessageRecord.created_at, MessageRecord.id)
                .limit(limit)
            )
            return [self._to_domain(record) for record in result.scalars().all()]

    async def get_context(self, session_id: str) -> Optional[ConversationContext]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ConversationContextRecord).where(ConversationContextRecord.session_id == session_id)
            )
            record = result.scalar_one_or_none()
            return self._context_to_domain(record) if record else None

    async def save_context(self, context: ConversationContext) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await self._upsert_context(session, context)

    async def save_summary(self, summary: Message, context: ConversationContext) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(self._to_db(summary))
                await self._upsert_context(session, context)
        logger.info(
            f"[SqlMessageRepository] Stored summary {summary.id} for session {context.session_id}; "
            f"{len(context.active_message_ids)} active message(s)"
        )

    async def _append_active(
        self, session: AsyncSession, context: ConversationContext, message_ids: List[str]
    ) -> List[str]:
        """Append to the stored active list so concurrent writers of a session never drop ids."""
        result = await session.execute(
            select(ConversationContextRecord).where(
                ConversationContextRecord.session_id == context.session_id
            )
        )
        record = result.scalar_one_or_none()
        base = list(record.active_message_ids or []) if record else list(context.active_message_ids)
        active_ids = base + [message_id for message_id in message_ids if message_id not in base]
        now = datetime.now(timezone.utc)
        if record is None:
            session.add(
                ConversationContextRecord(
                    id=context.id,
                    session_id=context.session_id,
                    active_message_ids=active_ids,
                    summary=context.summary,
                    updated_at=now,
                )
            )
        else:
            record.active_message_ids = active_ids
            record.updated_at = now
        return active_ids

    async def _upsert_context(self, session: AsyncSession, context: ConversationContext) -> None:
        result = await session.execute(
            select(ConversationContextRecord).where(
                ConversationContextRecord.session_id == context.session_id
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            session.add(
                ConversationContextRecord(
                    id=context.id,
                    session_id=context.session_id,
                    active_message_ids=list(context.active_message_ids),
                    summary=context.summary,
                    updated_at=context.updated_at,
                )
            )
            return
        record.active_message_ids = list(context.active_message_ids)
        record.summary = context.summary
        record.updated_at = context.updated_at

    @staticmethod
    def _to_db(message: Message) -> MessageRecord:
        return MessageRecord(
            id=message.id,
            session_id=message.session_id,
            role=message.role.value,
            content=message.content,
            message_type=message.message_type.value,
            file_urls=list(message.file_urls),
            token_count=message.token_count,
            body_token_count=message.body_token_count,
            provider_id=message.provider_id,
            model_id=message.model_id,
            meta=dict(message.metadata),
            created_at=message.created_at,
        )

    @staticmethod
    def _to_domain(record: MessageRecord) -> Message:
        return Message(
            id=record.id,
            session_id=record.session_id,
            role=MessageRole(record.role),
            content=record.content or "",
            message_type=MessageType(record.message_type),
            file_urls=list(record.file_urls or []),
            token_count=record.token_count,
            body_token_count=record.body_token_count,
            provider_id=record.provider_id,
            model_id=record.model_id,
            metadata=dict(record.meta or {}),
            created_at=_as_utc(record.created_at),
        )

    @staticmethod
    def _context_to_domain(record: ConversationContextRecord) -> ConversationContext:
        return ConversationContext(
            id=record.id,
            session_id=record.session_id,
            active_message_ids=list(record.active_message_ids or []),
            summary=record.summary,
            updated_at=_as_utc(record.updated_at),
        )
