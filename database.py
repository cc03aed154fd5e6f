from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
from typing import List, Optional
import logging

from core.exceptions import AuctionError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./auction.db"
    admin_token: str = "admin"

    # Bid ladder
    bid_increment: int = 200_000
    bid_timer_seconds: int = 20
    reset_timer_on_bid: bool = False
    auto_advance: bool = False

    # Teams
    starting_purse: int = 100_000_000
    max_team_size: int = 5

    clock_enabled: bool = True
    tick_interval_seconds: float = 1.0
    cors_origins: List[str] = ["*"]

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()

# SQLite 需要 check_same_thread=False，FastAPI 的 threadpool 會跨執行緒使用連線
_is_sqlite = settings.database_url.startswith("sqlite")
_is_memory = _is_sqlite and (settings.database_url in ("sqlite://", "sqlite:///:memory:"))

# 記憶體資料庫必須共用同一條連線，否則每條連線都是一個空的資料庫
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    poolclass=StaticPool if _is_memory else None,
    pool_pre_ping=True
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency：每個請求 / WebSocket 連線一個 Session，結束時關閉
    """
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def session_arg(args, kwargs) -> Optional[Session]:
    """從被裝飾函式的參數中找出 Session（第一個位置參數或 db=）"""
    if args and isinstance(args[0], Session):
        return args[0]
    return kwargs.get('db')


def transactional(func):
    """
    把一次 Arbiter / Engine 操作包成單一 transaction

    正常返回 → commit（commit 時 sync 層才會把變更廣播出去）
    拋出異常 → rollback 後原樣往上拋；AuctionError 是預期內的拒絕，只記 info

    範例：
        @transactional
        def join_team(db: Session, team_id, enrollment_id):
            team = with_team_lock(team_id, db).first()
            ...

    函式本身不可以呼叫 db.commit()。
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = session_arg(args, kwargs)
        if db is None:
            raise ValueError(f"@transactional needs a Session argument in {func.__name__}")

        try:
            result = func(*args, **kwargs)
            db.commit()
        except AuctionError as e:
            logger.info(f"{func.__name__} rejected: {e}")
            db.rollback()
            raise
        except Exception as e:
            logger.error(f"{func.__name__} failed, rolling back: {e}", exc_info=True)
            db.rollback()
            raise
        return result

    return wrapper
