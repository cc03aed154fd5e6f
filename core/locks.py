"""
並發控制工具

兩層保護：
1. 行程內的單一寫入者鎖（writer_lock）：所有會修改共享狀態的操作都在這把鎖裡執行，
   兩個 join_team 或兩個 submit_bid 絕不會交錯。SQLite 沒有 row lock，靠這層就夠了。
2. Database-level 的悲觀鎖：PostgreSQL 下用 SELECT ... FOR UPDATE 再鎖一次資料列
   （SQLite 會直接忽略 FOR UPDATE）。
"""
import threading
from functools import wraps

from sqlalchemy.orm import Session, Query

from database import session_arg
from models import Team, LobbySettings, AuctionState, CatalogueEntry, LOBBY_ID, AUCTION_STATE_ID

writer_lock = threading.RLock()


def serialized(func):
    """
    讓整個操作（含 commit）在 writer_lock 內完成

    使用方式（放在 @transactional 外層，commit 與廣播都在鎖內發生）：
        @staticmethod
        @serialized
        @transactional
        def join_team(db: Session, ...):
            ...
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = session_arg(args, kwargs)
        with writer_lock:
            if db is not None:
                # 長連線的 session 可能還留著舊資料（包含已載入的 members 集合），
                # 進鎖後一律重新讀取
                db.expire_all()
            return func(*args, **kwargs)

    return wrapper


def with_team_lock(team_id: str, db: Session) -> Query:
    """
    鎖定一個 Team（行級鎖）

    使用場景：
    - join 時的 check-and-append（名額計算與新增成員必須是同一步）
    - 扣款（purse）時

    返回：
        Query object（需要呼叫 .first() 來取得結果）
    """
    return db.query(Team).populate_existing().filter(
        Team.id == team_id
    ).with_for_update(nowait=False)


def with_lobby_lock(db: Session) -> Query:
    return db.query(LobbySettings).populate_existing().filter(
        LobbySettings.id == LOBBY_ID
    ).with_for_update(nowait=False)


def with_auction_lock(db: Session) -> Query:
    """
    鎖定 AuctionState（出價的 compare-and-set 依賴這把鎖）
    """
    return db.query(AuctionState).populate_existing().filter(
        AuctionState.id == AUCTION_STATE_ID
    ).with_for_update(nowait=False)


def with_item_lock(item_id: int, db: Session) -> Query:
    return db.query(CatalogueEntry).populate_existing().filter(
        CatalogueEntry.id == item_id
    ).with_for_update(nowait=False)
