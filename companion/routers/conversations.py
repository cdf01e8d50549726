"""
会話管理のルーター
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from companion.database import get_db
from companion.crud import conversation as crud_conversation
from companion.models.conversation import Conversation, Message
from companion.models.user import User
from companion.routers.auth import get_current_user

router = APIRouter(
    prefix="/api/conversations",
    tags=["会話"]
)


class ConversationCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)


class ConversationRename(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


def serialize_conversation(conversation: Conversation) -> dict:
    return {
        "id": conversation.id,
        "title": conversation.title,
        "createdAt": conversation.created_at.isoformat() if conversation.created_at else None,
        "updatedAt": conversation.updated_at.isoformat() if conversation.updated_at else None,
    }


def serialize_message(message: Message) -> dict:
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "createdAt": message.created_at.isoformat() if message.created_at else None,
    }


def _get_owned_conversation(db: Session, conversation_id: str, user: User) -> Conversation:
    """自分の会話のみ取得（他人の会話は存在しない扱い）"""
    conversation = crud_conversation.get_user_conversation(db, conversation_id, user.id)
    if conversation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )
    return conversation


@router.get("")
async def list_conversations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """自分の会話一覧を取得"""
    conversations = crud_conversation.get_user_conversations(db, current_user.id)
    return {"conversations": [serialize_conversation(c) for c in conversations]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_conversation(
    body: ConversationCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    conversation = crud_conversation.create_conversation(db, current_user.id, body.title)
    return {"conversation": serialize_conversation(conversation)}


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """会話とメッセージ全件を取得"""
    conversation = _get_owned_conversation(db, conversation_id, current_user)
    return {
        "conversation": serialize_conversation(conversation),
        "messages": [serialize_message(m) for m in conversation.messages],
    }


@router.get("/{conversation_id}/messages")
async def get_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """メッセージのページ取得（新しい方から offset 件スキップ、時系列順）"""
    _get_owned_conversation(db, conversation_id, current_user)
    messages = crud_conversation.get_messages_page(db, conversation_id, limit=limit, offset=offset)
    return {
        "messages": [serialize_message(m) for m in messages],
        "limit": limit,
        "offset": offset,
    }


@router.put("/{conversation_id}")
async def rename_conversation(
    conversation_id: str,
    body: ConversationRename,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    conversation = _get_owned_conversation(db, conversation_id, current_user)
    conversation = crud_conversation.rename_conversation(db, conversation, body.title.strip())
    return {"conversation": serialize_conversation(conversation)}


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    conversation = _get_owned_conversation(db, conversation_id, current_user)
    crud_conversation.delete_conversation(db, conversation)
    return {"success": True}


@router.delete("/{conversation_id}/messages")
async def clear_conversation(
    conversation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """メッセージのみ削除（会話は残す）"""
    conversation = _get_owned_conversation(db, conversation_id, current_user)
    deleted = crud_conversation.clear_conversation(db, conversation)
    return {"success": True, "deleted": deleted}
