"""
データベース初期化スクリプト

python -m companion.init_db
"""
import logging

from companion.crud.companion import ensure_default_config
from companion.database import build_engine, build_session_factory
# モデルをインポート（これにより、モデルがBaseに登録される）
from companion.models import Base

logger = logging.getLogger(__name__)


def init_database(engine=None) -> None:
    """テーブルを作成し、コンパニオン設定の初期値を登録"""
    engine = engine if engine is not None else build_engine()
    logger.info("Initializing database...")

    # 全てのテーブルを作成
    Base.metadata.create_all(bind=engine)

    db = build_session_factory(engine)()
    try:
        config = ensure_default_config(db)
        logger.info(f"Companion config ready (name={config.name}, version={config.version})")
    finally:
        db.close()

    logger.info("Database initialization complete. Tables: " + ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_database()
