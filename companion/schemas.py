"""
チャットAPIのリクエストモデル
"""
from typing import Literal, Optional
from pydantic import BaseModel, Field

Length = Literal["brief", "moderate", "detailed"]
Style = Literal["casual", "thoughtful", "creative"]
PersonalityMode = Literal["nurturing", "playful", "dominant"]
Gender = Literal["male", "female", "non-binary", "custom"]


class ChatPreferences(BaseModel):
    """リクエスト単位のレスポンス設定"""
    length: Optional[Length] = None
    style: Optional[Style] = None


class ChatRequest(BaseModel):
    """チャットリクエスト"""
    message: str = Field(..., min_length=1, max_length=10000)
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    preferences: Optional[ChatPreferences] = None
    personality_mode: Optional[PersonalityMode] = Field(None, alias="personalityMode")
    store_locally: bool = Field(False, alias="storeLocally")
    new_chat: bool = Field(False, alias="newChat")

    class Config:
        populate_by_name = True
