"""
会話・メッセージ関連のCRUD操作
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from companion.models.conversation import Conversation, Message

logger = logging.getLogger(__name__)

NEW_CONVERSATION_TITLE = "New Conversation"
TITLE_MAX_LENGTH = 50


def seed_title(message: str, is_new_chat: bool = False) -> str:
    """会話タイトルの初期値（アイスブレイクの場合は固定タイトル）"""
    if is_new_chat:
        return NEW_CONVERSATION_TITLE
    if len(message) > TITLE_MAX_LENGTH:
        return message[:TITLE_MAX_LENGTH] + "..."
    return message


def create_conversation(db: Session, user_id: str, title: Optional[str] = None) -> Conversation:
    """新規会話の作成"""
    db_conversation = Conversation(user_id=user_id, title=title or NEW_CONVERSATION_TITLE)
    db.add(db_conversation)
    db.commit()
    db.refresh(db_conversation)
    return db_conversation


def get_user_conversation(db: Session, conversation_id: str, user_id: str) -> Optional[Conversation]:
    """ユーザーが所有する会話を取得"""
    return db.query(Conversation).filter(
        Conversation.id == conversation_id,
        Conversation.user_id == user_id,
    ).first()


def get_user_conversations(db: Session, user_id: str) -> List[Conversation]:
    """ユーザーの会話一覧（更新日時の新しい順）"""
    return db.query(Conversation).filter(
        Conversation.user_id == user_id
    ).order_by(Conversation.updated_at.desc()).all()


def append_message(db: Session, conversation_id: str, role: str, content: str) -> Message:
    """
    メッセージを追記

    会話内の連番は現在の最大値+1。同時書き込みで連番が衝突した場合は取り直す。
    """
    for attempt in range(3):
        next_sequence = (
            db.query(func.max(Message.sequence))
            .filter(Message.conversation_id == conversation_id)
            .scalar()
            or 0
        ) + 1
        db_message = Message(
            conversation_id=conversation_id,
            role=role,
            content=content,
            sequence=next_sequence,
        )
        db.add(db_message)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(f"Sequence collision in conversation {conversation_id} (attempt {attempt + 1})")
            continue
        db.refresh(db_message)
        return db_message
    raise RuntimeError(f"Could not allocate message sequence for conversation {conversation_id}")


def get_recent_history(db: Session, conversation_id: str, limit: int = 10) -> List[Dict[str, str]]:
    """直近N件のメッセージを時系列順で取得（モデルのコンテキスト用）"""
    recent = db.query(Message).filter(
        Message.conversation_id == conversation_id
    ).order_by(Message.created_at.desc(), Message.sequence.desc()).limit(limit).all()

    return [{"role": m.role, "content": m.content} for m in reversed(recent)]


def get_messages_page(db: Session, conversation_id: str, limit: int = 50, offset: int = 0) -> List[Message]:
    """メッセージのページ取得（新しい方からoffset件スキップ、時系列順で返す）"""
    page = db.query(Message).filter(
        Message.conversation_id == conversation_id
    ).order_by(Message.created_at.desc(), Message.sequence.desc()).offset(offset).limit(limit).all()
    page.reverse()
    return page


def touch_conversation(db: Session, conversation_id: str) -> None:
    """会話の更新日時を更新"""
    db.query(Conversation).filter(
        Conversation.id == conversation_id
    ).update({Conversation.updated_at: datetime.utcnow()}, synchronize_session=False)
    db.commit()


def rename_conversation(db: Session, conversation: Conversation, title: str) -> Conversation:
    conversation.title = title
    conversation.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(conversation)
    return conversation


def delete_conversation(db: Session, conversation: Conversation) -> None:
    """会話とそのメッセージを削除"""
    db.delete(conversation)
    db.commit()


def clear_conversation(db: Session, conversation: Conversation) -> int:
    """メッセージを全削除（会話自体は残す）"""
    deleted = db.query(Message).filter(
        Message.conversation_id == conversation.id
    ).delete(synchronize_session=False)
    conversation.updated_at = datetime.utcnow()
    db.commit()
    return deleted


def count_user_messages_since(
    db: Session,
    user_id: str,
    since: datetime,
    until: Optional[datetime] = None,
) -> int:
    """ユーザーの全会話における指定期間のユーザーメッセージ数"""
    query = db.query(func.count(Message.id)).join(
        Conversation, Message.conversation_id == Conversation.id
    ).filter(
        Conversation.user_id == user_id,
        Message.role == "user",
        Message.created_at >= since,
    )
    if until is not None:
        query = query.filter(Message.created_at < until)
    return query.scalar() or 0
