"""
管理者用のルーター（コンパニオン設定・システムプロンプト・モデル）
"""
import logging
from typing import Literal, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from companion.database import get_db
from companion.crud import companion as crud_companion
from companion.crud import user as crud_user
from companion.llm_gateway import UpstreamGenerationError
from companion.models.companion import CompanionConfig, SystemPrompt
from companion.models.user import User
from companion.prompt_service import build_template_prompt, resolve_complete_prompt
from companion.routers.auth import get_admin_user, serialize_user
from companion.schemas import Gender, Length, PersonalityMode, Style

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["管理"]
)


# リクエストモデル
class CompanionConfigUpdate(BaseModel):
    """指定した項目のみ上書き"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    default_gender: Optional[Gender] = Field(None, alias="defaultGender")
    custom_gender_text: Optional[str] = Field(None, alias="customGenderText")
    default_length: Optional[Length] = Field(None, alias="defaultLength")
    default_style: Optional[Style] = Field(None, alias="defaultStyle")
    brief_tokens: Optional[int] = Field(None, alias="briefTokens", ge=1, le=8192)
    moderate_tokens: Optional[int] = Field(None, alias="moderateTokens", ge=1, le=8192)
    detailed_tokens: Optional[int] = Field(None, alias="detailedTokens", ge=1, le=8192)
    brief_instruction: Optional[str] = Field(None, alias="briefInstruction")
    moderate_instruction: Optional[str] = Field(None, alias="moderateInstruction")
    detailed_instruction: Optional[str] = Field(None, alias="detailedInstruction")
    casual_instruction: Optional[str] = Field(None, alias="casualInstruction")
    thoughtful_instruction: Optional[str] = Field(None, alias="thoughtfulInstruction")
    creative_instruction: Optional[str] = Field(None, alias="creativeInstruction")
    system_prompt_template: Optional[str] = Field(None, alias="systemPromptTemplate", min_length=1)
    general_model: Optional[str] = Field(None, alias="generalModel")
    long_form_model: Optional[str] = Field(None, alias="longFormModel")
    temperature: Optional[float] = Field(None, ge=0, le=2)
    use_long_form_for_detailed: Optional[bool] = Field(None, alias="useLongFormForDetailed")
    welcome_title: Optional[str] = Field(None, alias="welcomeTitle")
    welcome_message: Optional[str] = Field(None, alias="welcomeMessage")
    expected_version: Optional[int] = Field(None, alias="expectedVersion")

    class Config:
        populate_by_name = True


class PreviewRequest(BaseModel):
    length: Optional[Length] = None
    style: Optional[Style] = None
    gender: Optional[Gender] = None
    custom_gender: Optional[str] = Field(None, alias="customGender")
    personality_mode: Optional[PersonalityMode] = Field(None, alias="personalityMode")

    class Config:
        populate_by_name = True


class SystemPromptCreate(BaseModel):
    name: str = Field("default", min_length=1, max_length=100)
    content: str = Field(..., min_length=1)
    notes: Optional[str] = None
    activate: bool = False


class SubscriptionUpdate(BaseModel):
    status: Literal["subscribed", "not_subscribed"]


def serialize_config(config: CompanionConfig) -> dict:
    return {
        "name": config.name,
        "defaultGender": config.default_gender,
        "customGenderText": config.custom_gender_text,
        "defaultLength": config.default_length,
        "defaultStyle": config.default_style,
        "briefTokens": config.brief_tokens,
        "moderateTokens": config.moderate_tokens,
        "detailedTokens": config.detailed_tokens,
        "briefInstruction": config.brief_instruction,
        "moderateInstruction": config.moderate_instruction,
        "detailedInstruction": config.detailed_instruction,
        "casualInstruction": config.casual_instruction,
        "thoughtfulInstruction": config.thoughtful_instruction,
        "creativeInstruction": config.creative_instruction,
        "systemPromptTemplate": config.system_prompt_template,
        "generalModel": config.general_model,
        "longFormModel": config.long_form_model,
        "temperature": config.temperature,
        "useLongFormForDetailed": config.use_long_form_for_detailed,
        "welcomeTitle": config.welcome_title,
        "welcomeMessage": config.welcome_message,
        "version": config.version,
        "updatedAt": config.updated_at.isoformat() if config.updated_at else None,
    }


def serialize_prompt(prompt: SystemPrompt) -> dict:
    return {
        "id": prompt.id,
        "name": prompt.name,
        "content": prompt.content,
        "version": prompt.version,
        "isActive": bool(prompt.is_active),
        "createdBy": prompt.created_by,
        "notes": prompt.notes,
        "createdAt": prompt.created_at.isoformat() if prompt.created_at else None,
    }


def _get_prompt_or_404(db: Session, prompt_id: str) -> SystemPrompt:
    prompt = crud_companion.get_system_prompt(db, prompt_id)
    if prompt is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="System prompt not found"
        )
    return prompt


# --- コンパニオン設定 ---

@router.get("/companion")
async def get_companion(
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    return {"config": serialize_config(crud_companion.get_companion_config(db))}


@router.put("/companion")
async def update_companion(
    body: CompanionConfigUpdate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """コンパニオン設定の部分更新（expectedVersion 指定時は楽観的ロック）"""
    fields = body.model_dump(exclude_unset=True, exclude_none=True, exclude={"expected_version"})
    if not fields:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update"
        )
    config = crud_companion.update_companion_config(db, fields, expected_version=body.expected_version)
    logger.info(f"Admin {admin.id} updated companion config to version {config.version}")
    return {"config": serialize_config(config)}


@router.post("/companion/preview")
async def preview_prompt(
    body: PreviewRequest,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """テンプレートから生成したプロンプトと、チャットで実際に使われるプロンプトのプレビュー"""
    config = crud_companion.get_companion_config(db)
    length = body.length or config.default_length or "moderate"
    style = body.style or config.default_style or "thoughtful"
    return {
        "templatePrompt": build_template_prompt(config, length, style, body.gender, body.custom_gender),
        "completePrompt": resolve_complete_prompt(db, admin, body.personality_mode),
        "length": length,
        "style": style,
    }


# --- システムプロンプト ---

@router.get("/system-prompts")
async def list_system_prompts(
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    prompts = crud_companion.list_system_prompts(db)
    return {"prompts": [serialize_prompt(p) for p in prompts]}


@router.get("/system-prompts/active")
async def get_active_system_prompt(
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """アクティブなプロンプト（なければ null、組み込みのデフォルトが使われる）"""
    prompt = crud_companion.get_active_system_prompt(db)
    return {"prompt": serialize_prompt(prompt) if prompt else None}


@router.get("/system-prompts/{prompt_id}")
async def get_system_prompt(
    prompt_id: str,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    return {"prompt": serialize_prompt(_get_prompt_or_404(db, prompt_id))}


@router.post("/system-prompts", status_code=status.HTTP_201_CREATED)
async def create_system_prompt(
    body: SystemPromptCreate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """新しいバージョンを作成（activate=true の場合は同時にアクティブ化）"""
    prompt = crud_companion.create_system_prompt(
        db, name=body.name, content=body.content, created_by=admin.id, notes=body.notes
    )
    if body.activate:
        prompt = crud_companion.activate_system_prompt(db, prompt)
    logger.info(f"Admin {admin.id} created system prompt {prompt.id} ({prompt.name} v{prompt.version})")
    return {"prompt": serialize_prompt(prompt)}


@router.put("/system-prompts/{prompt_id}/activate")
async def activate_system_prompt(
    prompt_id: str,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    prompt = _get_prompt_or_404(db, prompt_id)
    prompt = crud_companion.activate_system_prompt(db, prompt)
    logger.info(f"Admin {admin.id} activated system prompt {prompt.id}")
    return {"prompt": serialize_prompt(prompt)}


@router.delete("/system-prompts/{prompt_id}")
async def delete_system_prompt(
    prompt_id: str,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    prompt = _get_prompt_or_404(db, prompt_id)
    if prompt.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete the active system prompt"
        )
    crud_companion.delete_system_prompt(db, prompt)
    return {"success": True}


# --- モデル ---

@router.get("/models")
async def list_models(
    request: Request,
    admin: User = Depends(get_admin_user)
):
    """Ollamaで利用可能なモデル一覧"""
    gateway = request.app.state.gateway
    try:
        models = await gateway.list_models()
    except UpstreamGenerationError as e:
        logger.error(f"Failed to list Ollama models: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch models"
        )
    return {
        "models": models,
        "generalModel": gateway.general_model,
        "longFormModel": gateway.long_form_model,
    }


@router.post("/test-ollama")
async def test_ollama(
    request: Request,
    admin: User = Depends(get_admin_user)
):
    return await request.app.state.gateway.test_connection()


# --- ユーザー ---

@router.put("/users/{user_id}/subscription")
async def update_subscription(
    user_id: str,
    body: SubscriptionUpdate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """サブスクリプション状態の手動変更"""
    user = crud_user.get_user(db, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    user = crud_user.update_user_fields(db, user, subscription_status=body.status)
    logger.info(f"Admin {admin.id} set subscription of user {user.id} to {body.status}")
    return {"user": serialize_user(user)}
