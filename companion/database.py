"""
データベース接続設定
"""
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from companion.config import DATABASE_URL


def build_engine(url: str = DATABASE_URL, **kwargs):
    """URLからエンジンを作成"""
    # PostgreSQLの場合の処理を追加
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg2://")
    # SQLite用の接続設定
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    connect_args.update(kwargs.pop("connect_args", {}))
    return create_engine(url, connect_args=connect_args, **kwargs)


def build_session_factory(engine):
    """セッションファクトリの作成"""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


# ベースクラス
Base = declarative_base()


# 依存性注入用の関数
def get_db(request: Request):
    """アプリケーションのセッションファクトリからセッションを取得"""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
