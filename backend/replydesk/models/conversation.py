from sqlalchemy import Column, String, DateTime, ForeignKey, Text, BigInteger, Boolean, Integer, JSON, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from replydesk.db.base import Base


class MessageDirection(str, enum.Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class ConversationStatus(str, enum.Enum):
    OPEN = "open"
    PENDING_HUMAN = "pending_human"
    RESOLVED = "resolved"


class Conversation(Base):
    __tablename__ = "conversation"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    channel = Column(String(32), nullable=False, default="web_widget")
    status = Column(String(32), nullable=False, default=ConversationStatus.OPEN.value)

    # Bumped once per inbound customer message; a reply commits only while
    # replied_generation is still behind the generation it was computed for.
    burst_generation = Column(Integer, nullable=False, default=0, server_default="0")
    replied_generation = Column(Integer, nullable=False, default=0, server_default="0")
    # Highest inbound message id answered by the last committed reply or handoff.
    covered_inbound_id = Column(BigInteger, nullable=False, default=0, server_default="0")

    additional_attributes = Column(JSON, default=dict)  # handoff flags, contact email

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_message_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")


class Message(Base):
    __tablename__ = "message"
    __table_args__ = (
        Index("ix_message_conversation_created", "conversation_id", "created_at"),
    )

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    conversation_id = Column(BigInteger, ForeignKey("conversation.id"), nullable=False)

    direction = Column(String(16), nullable=False)  # incoming, outgoing
    private = Column(Boolean, nullable=False, default=False)
    content = Column(Text, nullable=False)
    additional_attributes = Column(JSON, nullable=True)  # validation, citations, product cards

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
