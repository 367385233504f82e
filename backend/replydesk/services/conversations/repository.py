from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from replydesk.core.logging import get_logger
from replydesk.models.conversation import Conversation, ConversationStatus, Message, MessageDirection
from replydesk.schemas.chat import ReplyPayload
from replydesk.services.conversations.types import ConversationSnapshot, InboundReceipt, StoredMessage

logger = get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

_INCOMING = MessageDirection.INCOMING.value
_OUTGOING = MessageDirection.OUTGOING.value


def _to_stored(message: Message) -> StoredMessage:
    return StoredMessage(
        id=int(message.id),
        direction=message.direction,
        content=message.content or "",
        created_at=message.created_at,
        private=bool(message.private),
    )


def conversation_upsert(conversation_id: int, channel: Optional[str] = None):
    """INSERT for a fresh conversation row that is a no-op when the row already exists.

    Two first messages for the same conversation can arrive together; the loser
    of the race must not fail on the primary key.
    """
    return (
        pg_insert(Conversation)
        .values(
            id=conversation_id,
            channel=channel or "web_widget",
            status=ConversationStatus.OPEN.value,
            burst_generation=0,
            replied_generation=0,
            covered_inbound_id=0,
            additional_attributes={},
        )
        .on_conflict_do_nothing(index_elements=[Conversation.id])
    )


class SqlConversationStore:
    """Conversation log backed by the ``conversation`` and ``message`` tables.

    Every public method opens its own short session so no connection is held
    while the caller awaits an LLM.
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        if session_factory is None:
            from replydesk.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    async def record_inbound(
        self,
        conversation_id: int,
        content: str,
        *,
        private: bool = False,
        channel: Optional[str] = None,
    ) -> InboundReceipt:
        async with self._session_factory() as session:
            await session.execute(conversation_upsert(conversation_id, channel))

            message = Message(
                conversation_id=conversation_id,
                direction=_INCOMING,
                private=private,
                content=content,
            )
            session.add(message)
            if private:
                generation = await session.scalar(
                    select(Conversation.burst_generation).where(Conversation.id == conversation_id)
                )
            else:
                result = await session.execute(
                    update(Conversation)
                    .where(Conversation.id == conversation_id)
                    .values(burst_generation=Conversation.burst_generation + 1, last_message_at=func.now())
                    .returning(Conversation.burst_generation)
                )
                generation = result.scalar_one()
            await session.flush()
            await session.refresh(message)
            await session.commit()
            return InboundReceipt(
                conversation_id=conversation_id,
                message_id=int(message.id),
                generation=int(generation or 0),
                created_at=message.created_at,
            )

    async def snapshot(self, conversation_id: int) -> Optional[ConversationSnapshot]:
        async with self._session_factory() as session:
            conversation = await session.get(Conversation, conversation_id)
            if conversation is None:
                return None
            covered_inbound_id = int(conversation.covered_inbound_id or 0)
            inbound = and_(
                Message.conversation_id == conversation_id,
                Message.direction == _INCOMING,
                Message.private.is_(False),
            )
            latest_inbound_id = await session.scalar(select(func.max(Message.id)).where(inbound))
            burst_started_at = await session.scalar(
                select(func.min(Message.created_at)).where(inbound, Message.id > covered_inbound_id)
            )
            attributes = dict(conversation.additional_attributes or {})
            return ConversationSnapshot(
                conversation_id=conversation_id,
                channel=conversation.channel,
                latest_inbound_id=int(latest_inbound_id) if latest_inbound_id is not None else None,
                burst_generation=int(conversation.burst_generation or 0),
                replied_generation=int(conversation.replied_generation or 0),
                burst_started_at=burst_started_at,
                handed_off=conversation.status == ConversationStatus.PENDING_HUMAN.value or bool(attributes.get("handoff")),
                covered_inbound_id=covered_inbound_id,
                attributes=attributes,
            )

    async def _covered_inbound_id(self, session: AsyncSession, conversation_id: int) -> int:
        value = await session.scalar(
            select(Conversation.covered_inbound_id).where(Conversation.id == conversation_id)
        )
        return int(value or 0)

    async def pending_batch(self, conversation_id: int) -> List[StoredMessage]:
        async with self._session_factory() as session:
            covered_inbound_id = await self._covered_inbound_id(session, conversation_id)
            rows = await session.scalars(
                select(Message)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.direction == _INCOMING,
                    Message.private.is_(False),
                    Message.id > covered_inbound_id,
                )
                .order_by(Message.created_at, Message.id)
            )
            return [_to_stored(message) for message in rows]

    async def history(self, conversation_id: int, limit: int) -> List[StoredMessage]:
        """Answered turns: our public replies plus the inbound messages they covered."""
        if limit <= 0:
            return []
        async with self._session_factory() as session:
            covered_inbound_id = await self._covered_inbound_id(session, conversation_id)
            rows = await session.scalars(
                select(Message)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.private.is_(False),
                    or_(Message.direction == _OUTGOING, Message.id <= covered_inbound_id),
                )
                .order_by(Message.id.desc())
                .limit(limit)
            )
            return list(reversed([_to_stored(message) for message in rows]))

    async def _claim_generation(
        self,
        session: AsyncSession,
        conversation_id: int,
        generation: int,
        covered_inbound_id: int,
        **values: Any,
    ) -> bool:
        result = await session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id, Conversation.replied_generation < generation)
            .values(
                replied_generation=generation,
                covered_inbound_id=func.greatest(Conversation.covered_inbound_id, covered_inbound_id),
                last_message_at=func.now(),
                **values,
            )
        )
        return result.rowcount == 1

    async def commit_reply(
        self,
        conversation_id: int,
        generation: int,
        reply: ReplyPayload,
        covered_inbound_id: int,
    ) -> Optional[int]:
        async with self._session_factory() as session:
            if not await self._claim_generation(session, conversation_id, generation, covered_inbound_id):
                await session.rollback()
                logger.info(f"[STORE] reply for conversation={conversation_id} gen={generation} already covered")
                return None
            message = Message(
                conversation_id=conversation_id,
                direction=_OUTGOING,
                private=False,
                content=reply.text,
                additional_attributes=reply.model_dump(mode="json", exclude={"text"}),
            )
            session.add(message)
            await session.flush()
            message_id = int(message.id)
            await session.commit()
            return message_id

    async def mark_handoff(self, conversation_id: int, generation: int, note: str, covered_inbound_id: int) -> bool:
        async with self._session_factory() as session:
            if not await self._claim_generation(
                session,
                conversation_id,
                generation,
                covered_inbound_id,
                status=ConversationStatus.PENDING_HUMAN.value,
            ):
                await session.rollback()
                return False
            session.add(
                Message(
                    conversation_id=conversation_id,
                    direction=_OUTGOING,
                    private=True,
                    content=note,
                    additional_attributes={"handoff": True},
                )
            )
            await session.commit()
        await self.update_attributes(conversation_id, {"handoff": True})
        return True

    async def update_attributes(self, conversation_id: int, attributes: Dict[str, Any]) -> None:
        async with self._session_factory() as session:
            conversation = await session.get(Conversation, conversation_id)
            if conversation is None:
                return
            merged = dict(conversation.additional_attributes or {})
            merged.update(attributes)
            conversation.additional_attributes = merged
            await session.commit()
