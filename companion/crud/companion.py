"""
コンパニオン設定・システムプロンプト関連のCRUD操作
"""
import uuid
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from companion.models.companion import CompanionConfig, SystemPrompt

logger = logging.getLogger(__name__)

CONFIG_ID = "default"

# 管理者が更新できない列
_IMMUTABLE_FIELDS = {"id", "version", "updated_at"}
_CONFIG_FIELDS = {c.name for c in CompanionConfig.__table__.columns} - _IMMUTABLE_FIELDS


class ConfigurationError(Exception):
    """コンパニオン設定が存在しない（管理者による初期化が必要）"""
    pass


class ConfigConflictError(Exception):
    """設定が別の更新と競合した"""
    pass


# --- コンパニオン設定 ---

def get_companion_config_optional(db: Session) -> Optional[CompanionConfig]:
    return db.query(CompanionConfig).filter(CompanionConfig.id == CONFIG_ID).first()


def get_companion_config(db: Session) -> CompanionConfig:
    """設定行を取得（存在しない場合は ConfigurationError）"""
    config = get_companion_config_optional(db)
    if config is None:
        raise ConfigurationError("Companion not configured")
    return config


def ensure_default_config(db: Session) -> CompanionConfig:
    """初期化時のみ使用: デフォルト設定行がなければ作成"""
    config = get_companion_config_optional(db)
    if config is None:
        config = CompanionConfig(id=CONFIG_ID)
        db.add(config)
        db.commit()
        db.refresh(config)
        logger.info("Created default companion config")
    return config


def update_companion_config(
    db: Session,
    fields: Dict[str, Any],
    expected_version: Optional[int] = None,
) -> CompanionConfig:
    """
    指定された列のみ上書きし、バージョンをインクリメント

    expected_version を指定した場合、現在のバージョンと一致しなければ
    ConfigConflictError（楽観的ロック）
    """
    unknown = set(fields) - _CONFIG_FIELDS
    if unknown:
        raise ValueError(f"Unknown or immutable config fields: {sorted(unknown)}")

    stmt = update(CompanionConfig).where(CompanionConfig.id == CONFIG_ID)
    if expected_version is not None:
        stmt = stmt.where(CompanionConfig.version == expected_version)
    stmt = stmt.values(
        **fields,
        version=CompanionConfig.version + 1,
        updated_at=datetime.utcnow(),
    )
    result = db.execute(stmt)
    if result.rowcount == 0:
        db.rollback()
        if get_companion_config_optional(db) is None:
            raise ConfigurationError("Companion not configured")
        raise ConfigConflictError("Companion config was modified by another update")
    db.commit()

    config = get_companion_config(db)
    db.refresh(config)
    logger.info(f"Companion config updated to version {config.version}: {sorted(fields)}")
    return config


# --- システムプロンプト ---

def get_active_system_prompt(db: Session) -> Optional[SystemPrompt]:
    return db.query(SystemPrompt).filter(SystemPrompt.is_active.is_(True)).first()


def get_system_prompt(db: Session, prompt_id: str) -> Optional[SystemPrompt]:
    return db.query(SystemPrompt).filter(SystemPrompt.id == prompt_id).first()


def list_system_prompts(db: Session) -> List[SystemPrompt]:
    return db.query(SystemPrompt).order_by(
        SystemPrompt.created_at.desc(), SystemPrompt.version.desc()
    ).all()


def create_system_prompt(
    db: Session,
    name: str,
    content: str,
    created_by: Optional[str] = None,
    notes: Optional[str] = None,
) -> SystemPrompt:
    """同名プロンプトの最大バージョン+1で新規作成（非アクティブ）"""
    latest = db.query(SystemPrompt).filter(
        SystemPrompt.name == name
    ).order_by(SystemPrompt.version.desc()).first()

    db_prompt = SystemPrompt(
        id=f"sp_{uuid.uuid4().hex[:8]}",
        name=name,
        content=content,
        version=(latest.version if latest else 0) + 1,
        is_active=False,
        created_by=created_by,
        notes=notes,
    )
    db.add(db_prompt)
    db.commit()
    db.refresh(db_prompt)
    return db_prompt


def activate_system_prompt(db: Session, prompt: SystemPrompt) -> SystemPrompt:
    """
    指定したプロンプトをアクティブにする

    旧アクティブの無効化と新アクティブの有効化を1トランザクションで行う。
    同時実行で部分ユニークインデックスに違反した場合は ConfigConflictError
    """
    try:
        db.execute(
            update(SystemPrompt)
            .where(SystemPrompt.is_active.is_(True), SystemPrompt.id != prompt.id)
            .values(is_active=False)
        )
        db.execute(
            update(SystemPrompt)
            .where(SystemPrompt.id == prompt.id)
            .values(is_active=True)
        )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConfigConflictError("Another system prompt was activated concurrently") from e
    db.refresh(prompt)
    return prompt


def delete_system_prompt(db: Session, prompt: SystemPrompt) -> None:
    db.delete(prompt)
    db.commit()
