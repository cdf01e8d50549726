"""
ユーザーモデルの定義
"""
import uuid
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from companion.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """ユーザーテーブルの定義"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    display_name = Column(String)
    chat_name = Column(String)  # AIがユーザーを呼ぶ名前
    is_admin = Column(Boolean, default=False)
    subscription_status = Column(String, default="not_subscribed")  # subscribed, not_subscribed
    credits = Column(Integer, default=0)
    personality_mode = Column(String, default="nurturing")  # nurturing, playful, dominant
    preferred_gender = Column(String)  # male, female, non-binary, custom
    custom_gender = Column(String)
    storage_preference = Column(String, default="cloud")  # local, cloud
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # リレーション（ユーザー削除時は関連データも削除）
    conversations = relationship("Conversation", back_populates="user", cascade="all, delete-orphan")
    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan")
    preferences = relationship("UserPreference", back_populates="user", uselist=False, cascade="all, delete-orphan")

    @property
    def is_subscribed(self) -> bool:
        return self.subscription_status == "subscribed"


class UserPreference(Base):
    """ユーザー設定テーブル（コンパニオンのデフォルト値を上書き）"""
    __tablename__ = "user_preferences"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    # レスポンス設定
    preferred_length = Column(String, default="moderate")  # brief, moderate, detailed
    preferred_style = Column(String, default="thoughtful")  # casual, thoughtful, creative

    # テーマ設定（クライアントから同期）
    theme_hue = Column(Integer, default=220)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="preferences")
