"""
会話・メッセージモデルの定義
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from companion.database import Base
from companion.models.user import _uuid


class Conversation(Base):
    """会話テーブル"""
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    # リレーション
    user = relationship("User", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by=lambda: [Message.created_at, Message.sequence],
    )


class Message(Base):
    """メッセージテーブル（追記のみ）"""
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    role = Column(String, nullable=False)  # user, assistant, system
    content = Column(Text, nullable=False)
    # 会話内の連番（同一タイムスタンプでも順序を確定させる）
    sequence = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        UniqueConstraint("conversation_id", "sequence", name="uq_messages_conversation_sequence"),
        Index("idx_messages_conversation_created", "conversation_id", "created_at"),
    )


class WeeklyMessageUsage(Base):
    """無料プランの週間メッセージ使用数カウンター"""
    __tablename__ = "weekly_message_usage"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    week_start = Column(DateTime, nullable=False)  # 週の開始（月曜 00:00）
    count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "week_start", name="uq_weekly_usage_user_week"),
    )
