"""
ユーザー設定のルーター
"""
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from companion import quota
from companion.database import get_db
from companion.crud import user as crud_user
from companion.models.user import User
from companion.routers.auth import get_current_user
from companion.schemas import Length, Style

router = APIRouter(
    prefix="/api/settings",
    tags=["設定"]
)


class ResponseSettingsUpdate(BaseModel):
    """省略した項目は変更しない"""
    length: Optional[Length] = None
    style: Optional[Style] = None
    theme_hue: Optional[int] = Field(None, alias="themeHue", ge=0, le=360)

    class Config:
        populate_by_name = True


def _serialize_settings(user: User, prefs) -> dict:
    return {
        "response": {
            "length": prefs.preferred_length if prefs else None,
            "style": prefs.preferred_style if prefs else None,
        },
        "themeHue": prefs.theme_hue if prefs else None,
        "personalityMode": user.personality_mode,
        "chatName": user.chat_name,
        "preferredGender": user.preferred_gender,
        "customGender": user.custom_gender,
        "storagePreference": user.storage_preference,
    }


@router.get("")
async def get_settings(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    prefs = crud_user.get_preferences(db, current_user.id)
    return {"settings": _serialize_settings(current_user, prefs)}


@router.put("/response")
async def update_response_settings(
    body: ResponseSettingsUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """レスポンスの長さ・スタイルの既定値を更新"""
    prefs = crud_user.update_preferences(
        db,
        current_user.id,
        preferred_length=body.length,
        preferred_style=body.style,
        theme_hue=body.theme_hue,
    )
    return {"settings": _serialize_settings(current_user, prefs)}


@router.get("/usage")
async def get_usage(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """今週のメッセージ使用状況（契約ユーザーは無制限）"""
    if current_user.is_subscribed:
        return {"unlimited": True}
    usage = quota.get_usage(db, current_user)
    return {
        "unlimited": False,
        "limit": usage.limit,
        "used": usage.used,
        "resetsAt": usage.resets_at.isoformat() + "Z",
    }
