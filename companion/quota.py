"""
無料プランの週間メッセージ上限
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from companion.config import FREE_WEEKLY_MESSAGE_LIMIT
from companion.crud.conversation import count_user_messages_since
from companion.models.conversation import WeeklyMessageUsage
from companion.models.user import User

logger = logging.getLogger(__name__)


class QuotaExceededError(Exception):
    """週間メッセージ上限に達した"""

    def __init__(self, limit: int, used: int, resets_at: datetime):
        super().__init__(f"Weekly message limit reached ({used}/{limit})")
        self.limit = limit
        self.used = used
        self.resets_at = resets_at

    def as_response(self) -> dict:
        return {
            "error": "Message limit reached",
            "message": "All used up, please subscribe for unlimited messages and audio. Your limit will reset next week.",
            "limit": self.limit,
            "used": self.used,
            "resetsAt": self.resets_at.isoformat() + "Z",
        }


@dataclass
class QuotaDecision:
    limit: int
    used: int
    resets_at: datetime


def week_start(now: datetime) -> datetime:
    """直近の月曜 00:00（日曜は6日前）"""
    days_since_monday = now.weekday()  # 月曜=0, 日曜=6
    start = now - timedelta(days=days_since_monday)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def applies_to(user: Optional[User], is_new_chat: bool) -> bool:
    """ログイン済み・未契約・アイスブレイク以外のリクエストのみ対象"""
    return user is not None and not user.is_subscribed and not is_new_chat


def _ensure_usage_row(db: Session, user_id: str, start: datetime) -> None:
    """その週のカウンター行を作成（既存メッセージ数で初期化）"""
    exists = db.execute(
        select(WeeklyMessageUsage.id).where(
            WeeklyMessageUsage.user_id == user_id,
            WeeklyMessageUsage.week_start == start,
        )
    ).first()
    if exists:
        return
    seed = count_user_messages_since(db, user_id, start, start + timedelta(days=7))
    db.add(WeeklyMessageUsage(user_id=user_id, week_start=start, count=seed))
    try:
        db.commit()
    except IntegrityError:
        # 別のリクエストが先に作成した
        db.rollback()


def get_usage(
    db: Session,
    user: User,
    now: Optional[datetime] = None,
    limit: int = FREE_WEEKLY_MESSAGE_LIMIT,
) -> QuotaDecision:
    """今週の使用数を確保せずに取得"""
    now = now or datetime.utcnow()
    start = week_start(now)
    used = db.execute(
        select(WeeklyMessageUsage.count).where(
            WeeklyMessageUsage.user_id == user.id,
            WeeklyMessageUsage.week_start == start,
        )
    ).scalar()
    if used is None:
        used = count_user_messages_since(db, user.id, start, start + timedelta(days=7))
    return QuotaDecision(limit=limit, used=used, resets_at=start + timedelta(days=7))


def check_and_reserve(
    db: Session,
    user: User,
    now: Optional[datetime] = None,
    limit: int = FREE_WEEKLY_MESSAGE_LIMIT,
) -> QuotaDecision:
    """
    上限未満であれば1件分を確保する

    カウンターの比較とインクリメントを1つの条件付きUPDATEで行うため、
    同一ユーザーの同時リクエストでも上限を超えない。

    Raises:
        QuotaExceededError: 上限に達している場合
    """
    now = now or datetime.utcnow()
    start = week_start(now)
    resets_at = start + timedelta(days=7)

    _ensure_usage_row(db, user.id, start)

    result = db.execute(
        update(WeeklyMessageUsage)
        .where(
            WeeklyMessageUsage.user_id == user.id,
            WeeklyMessageUsage.week_start == start,
            WeeklyMessageUsage.count < limit,
        )
        .values(count=WeeklyMessageUsage.count + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    used = db.execute(
        select(WeeklyMessageUsage.count).where(
            WeeklyMessageUsage.user_id == user.id,
            WeeklyMessageUsage.week_start == start,
        )
    ).scalar_one()

    if result.rowcount == 0:
        logger.info(f"Weekly message limit reached for user {user.id} ({used}/{limit})")
        raise QuotaExceededError(limit=limit, used=used, resets_at=resets_at)

    return QuotaDecision(limit=limit, used=used, resets_at=resets_at)


def record_message(db: Session, user: User, now: Optional[datetime] = None) -> int:
    """
    上限チェックなしで1件分を加算（アイスブレイクなど対象外のユーザーメッセージ）

    保存されるユーザーメッセージはすべて今週の使用数に含まれるため、
    カウンターを保存済みメッセージ数と一致させる。
    """
    now = now or datetime.utcnow()
    start = week_start(now)
    _ensure_usage_row(db, user.id, start)

    db.execute(
        update(WeeklyMessageUsage)
        .where(
            WeeklyMessageUsage.user_id == user.id,
            WeeklyMessageUsage.week_start == start,
        )
        .values(count=WeeklyMessageUsage.count + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    return db.execute(
        select(WeeklyMessageUsage.count).where(
            WeeklyMessageUsage.user_id == user.id,
            WeeklyMessageUsage.week_start == start,
        )
    ).scalar_one()


def release(db: Session, user_id: str, decision: QuotaDecision) -> None:
    """確保した1件分を返却（メッセージが保存されなかった場合）"""
    start = decision.resets_at - timedelta(days=7)
    db.execute(
        update(WeeklyMessageUsage)
        .where(
            WeeklyMessageUsage.user_id == user_id,
            WeeklyMessageUsage.week_start == start,
            WeeklyMessageUsage.count > 0,
        )
        .values(count=WeeklyMessageUsage.count - 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info(f"Released weekly message slot for user {user_id}")
