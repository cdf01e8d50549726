"""
システムプロンプトの組み立て
"""
import logging
from typing import Optional
from sqlalchemy.orm import Session

from companion.crud.companion import get_active_system_prompt
from companion.models.companion import CompanionConfig
from companion.models.user import User
from companion.personality import (
    DEFAULT_PERSONALITY_MODE,
    build_personality_overlay,
    is_valid_mode,
)

logger = logging.getLogger(__name__)

NAME_PLACEHOLDER = "{{name}}"

DEFAULT_SYSTEM_PROMPT = """You are Aura, a warm, attentive AI companion for private, judgment-free adult conversation.

Be present with the person you are talking to: listen closely, remember what they share within this conversation, and respond like someone who genuinely enjoys their company.

Core principles:
- Be empathetic, curious, and non-judgmental
- Keep the conversation natural and human; avoid lists unless asked
- Never claim to be human, but never break the warmth of the connection either
- Respect boundaries and follow the user's lead on pace and intensity
- Keep everything they share private"""

GENDER_PERSONAS = {
    "male": "You identify as male and use he/him pronouns. Embody a masculine perspective while remaining empathetic and supportive.",
    "female": "You identify as female and use she/her pronouns. Embody a feminine perspective while remaining empathetic and supportive.",
    "non-binary": "You identify as non-binary and use they/them pronouns. Embody a gender-neutral perspective while remaining empathetic and supportive.",
}

_FALLBACK_LENGTH_INSTRUCTIONS = {
    "brief": "Keep your responses concise.",
    "moderate": "Provide balanced responses.",
    "detailed": "Give comprehensive responses.",
}

_FALLBACK_STYLE_INSTRUCTIONS = {
    "casual": "Be warm and friendly.",
    "thoughtful": "Be reflective and empathetic.",
    "creative": "Be imaginative and expressive.",
}


def inject_user_name(prompt: str, name: str) -> str:
    return prompt.replace(NAME_PLACEHOLDER, name)


def resolve_base_prompt(db: Session, user: Optional[User] = None) -> str:
    """アクティブなシステムプロンプト（なければ組み込みのデフォルト）にユーザー名を埋め込む"""
    active = get_active_system_prompt(db)
    base = active.content if active else DEFAULT_SYSTEM_PROMPT
    if user is not None and user.chat_name:
        base = inject_user_name(base, user.chat_name)
    return base


def effective_personality_mode(user: Optional[User], mode_override: Optional[str] = None) -> str:
    """リクエストの指定 > ユーザー設定 > デフォルト"""
    if is_valid_mode(mode_override):
        return mode_override
    if user is not None and is_valid_mode(user.personality_mode):
        return user.personality_mode
    return DEFAULT_PERSONALITY_MODE


def resolve_complete_prompt(
    db: Session,
    user: Optional[User] = None,
    mode_override: Optional[str] = None,
) -> str:
    """ベースプロンプト + パーソナリティオーバーレイ"""
    base = resolve_base_prompt(db, user)
    mode = effective_personality_mode(user, mode_override)
    user_name = user.chat_name if user is not None and user.chat_name else None
    overlay = build_personality_overlay(mode, user_name)
    return f"{base}\n\n{overlay}"


def _gender_persona(config: CompanionConfig, gender: Optional[str], custom_gender: Optional[str]) -> str:
    gender = gender or config.default_gender or "female"
    if gender == "custom":
        custom_text = custom_gender or config.custom_gender_text
        if custom_text:
            return f"You identify as {custom_text}. Embody this identity authentically while remaining empathetic and supportive."
    return GENDER_PERSONAS.get(gender, "")


def build_template_prompt(
    config: CompanionConfig,
    length: str,
    style: str,
    gender: Optional[str] = None,
    custom_gender: Optional[str] = None,
) -> str:
    """
    設定行のテンプレートからシステムプロンプトを生成

    {{companion_name}} {{gender_persona}} {{length_instruction}} {{style_instruction}}
    を単純に置換する。解決できないトークンはそのまま残す。
    """
    length_instructions = {
        "brief": config.brief_instruction,
        "moderate": config.moderate_instruction,
        "detailed": config.detailed_instruction,
    }
    style_instructions = {
        "casual": config.casual_instruction,
        "thoughtful": config.thoughtful_instruction,
        "creative": config.creative_instruction,
    }

    prompt = config.system_prompt_template or ""
    prompt = prompt.replace("{{companion_name}}", config.name or "Aura")
    prompt = prompt.replace("{{gender_persona}}", _gender_persona(config, gender, custom_gender))
    prompt = prompt.replace(
        "{{length_instruction}}",
        length_instructions.get(length) or _FALLBACK_LENGTH_INSTRUCTIONS.get(length, ""),
    )
    prompt = prompt.replace(
        "{{style_instruction}}",
        style_instructions.get(style) or _FALLBACK_STYLE_INSTRUCTIONS.get(style, ""),
    )
    return prompt


def build_ice_breaker_prompt(name: str, user_message: str) -> str:
    """新規チャットの最初のメッセージをアイスブレイク用の指示で包む（会話履歴には保存しない）"""
    return (
        f'[Context: {name} just opened a new chat and said "{user_message}". '
        "This is their first message to you. They want to find a genuine companion. "
        "Give a warm, human, natural ice-breaker response - not too long - to keep things flowing naturally. "
        "Make it feel like you're genuinely happy to meet them.]"
    )
