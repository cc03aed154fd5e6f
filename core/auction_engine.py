"""
Auction Engine：拍賣流程與出價階梯

職責：
1. 拍賣生命週期：start / pause / resume / end / restart（經過 LobbyStateMachine）
2. 目錄游標：select_item / select_next_item / change_phase
3. 出價：submit_bid（單一權威的 compare-and-set）
4. 計時：tick 由伺服器時鐘驅動，倒數到 0 時 resolve（SOLD / UNSOLD）

每件物品的狀態：IDLE -> ACTIVE -> SOLD | UNSOLD（對這件物品是終態）。
"""
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy.orm import Session

from models import (
    AuctionState,
    AuctionStatus,
    BoughtItem,
    CatalogueEntry,
    ItemKind,
    ItemStatus,
    LobbyStatus,
    Phase,
    Team,
    AUCTION_STATE_ID,
)
from core.exceptions import (
    AlreadyHighestBidderError,
    AlreadySoldError,
    AuctionPausedError,
    InsufficientPurseError,
    InvalidPhaseError,
    ItemInProgressError,
    ItemNotFound,
    NoActiveItemError,
    QueueExhaustedError,
    StaleBidError,
    TeamNotFound,
    TimeExpiredError,
    ValidationError,
)
from core.locks import serialized, with_auction_lock, with_item_lock, with_team_lock
from core.state_machine import LobbyStateMachine, get_lobby
from core.sync import touch
from database import transactional, settings

logger = logging.getLogger(__name__)


def get_auction_state(db: Session, lock: bool = False) -> AuctionState:
    """取得 AuctionState（不存在就建立 IDLE 狀態）"""
    if lock:
        state = with_auction_lock(db).first()
    else:
        state = db.query(AuctionState).filter(AuctionState.id == AUCTION_STATE_ID).first()
    if state is None:
        state = AuctionState(
            id=AUCTION_STATE_ID,
            current_bid=0,
            timer_seconds=0,
            status=AuctionStatus.IDLE,
            phase=Phase.BATTERS,
            version=0,
        )
        db.add(state)
        db.flush()
    return state


def _reset_state(state: AuctionState) -> None:
    state.current_item_id = None
    state.current_bid = 0
    state.highest_bidder_team_id = None
    state.timer_seconds = 0
    state.status = AuctionStatus.IDLE
    state.phase = Phase.BATTERS
    state.last_resolution = None


def _require_live(db: Session) -> None:
    lobby = get_lobby(db)
    if lobby.status != LobbyStatus.LIVE:
        raise InvalidPhaseError(f"Auction is not live (status: {lobby.status.value})")


def _queue_query(db: Session, phase: Phase):
    return db.query(CatalogueEntry).filter(
        CatalogueEntry.phase == phase,
        CatalogueEntry.status == ItemStatus.AVAILABLE,
        CatalogueEntry.was_sent == False  # noqa: E712
    ).order_by(CatalogueEntry.id)


def _next_in_queue(db: Session, phase: Phase) -> Optional[CatalogueEntry]:
    return _queue_query(db, phase).first()


def _activate(db: Session, state: AuctionState, item: CatalogueEntry) -> AuctionState:
    state.current_item_id = item.id
    state.current_item = item
    state.current_bid = item.base_price
    state.highest_bidder_team_id = None
    state.highest_bidder = None
    state.timer_seconds = settings.bid_timer_seconds
    state.status = AuctionStatus.ACTIVE

    item.was_sent = True
    item.status = ItemStatus.AVAILABLE
    touch(db, state, item)

    logger.info(f"Item {item.id} ({item.name}) on the floor at {item.base_price}")
    return state


def _resolve(db: Session, state: AuctionState) -> AuctionState:
    """
    結算當前物品（呼叫端必須已鎖定 state，且 state.status == ACTIVE）

    - 有最高出價者：SOLD，扣款、加入 boughtItems
    - 沒有出價者：UNSOLD
    """
    item = with_item_lock(state.current_item_id, db).first()
    team = None
    if state.highest_bidder_team_id:
        team = with_team_lock(state.highest_bidder_team_id, db).first()

    price = state.current_bid
    if team is not None and team.purse < price:
        # submit_bid 已經檢查過餘額，這裡只在資料被外部改動時發生
        logger.error(
            f"Team {team.id} purse {team.purse} cannot cover {price} for item {item.id}, "
            f"resolving as UNSOLD"
        )
        team = None

    if team is not None:
        team.purse -= price
        team.bought_items.append(BoughtItem(
            item_id=item.id,
            name=item.name,
            role=item.role,
            kind=item.kind,
            price=price,
        ))
        item.status = ItemStatus.SOLD
        item.sold_to_team_id = team.id
        item.sold_price = price
        state.status = AuctionStatus.SOLD
        state.last_resolution = {
            "itemId": item.id,
            "itemName": item.name,
            "outcome": AuctionStatus.SOLD.value,
            "teamId": team.id,
            "teamName": team.name,
            "price": price,
        }
        touch(db, team)
        logger.info(f"Item {item.id} SOLD to team {team.id} for {price}")
    else:
        item.status = ItemStatus.UNSOLD
        state.status = AuctionStatus.UNSOLD
        state.last_resolution = {
            "itemId": item.id,
            "itemName": item.name,
            "outcome": AuctionStatus.UNSOLD.value,
            "teamId": None,
            "teamName": None,
            "price": None,
        }
        logger.info(f"Item {item.id} UNSOLD")

    state.timer_seconds = 0
    touch(db, state, item)
    return state


class AuctionEngine:
    """拍賣引擎"""

    # ============ 生命週期 ============

    @staticmethod
    @serialized
    def start_auction(db: Session) -> AuctionState:
        """
        開始拍賣（LOCKED -> STARTING -> LIVE）

        分兩個 transaction：先 commit STARTING（客戶端進入倒數畫面），
        再初始化 AuctionState 並立即轉成 LIVE。兩步都在 writer_lock 內。

        異常：
            InvalidStateTransition: 大廳不是 LOCKED
        """
        AuctionEngine._enter_starting(db)
        return AuctionEngine._go_live(db)

    @staticmethod
    @transactional
    def _enter_starting(db: Session):
        return LobbyStateMachine.transition(db, LobbyStatus.STARTING)

    @staticmethod
    @transactional
    def _go_live(db: Session) -> AuctionState:
        state = get_auction_state(db, lock=True)
        _reset_state(state)
        touch(db, state)
        LobbyStateMachine.transition(db, LobbyStatus.LIVE)
        logger.info("Auction initialized and live")
        return state

    @staticmethod
    @serialized
    @transactional
    def pause(db: Session):
        """暫停：計時凍結，currentBid 與最高出價者不變"""
        return LobbyStateMachine.transition(db, LobbyStatus.PAUSED)

    @staticmethod
    @serialized
    @transactional
    def resume(db: Session):
        return LobbyStateMachine.transition(db, LobbyStatus.LIVE)

    @staticmethod
    @serialized
    @transactional
    def end_auction(db: Session):
        """
        結束拍賣（LIVE / PAUSED -> RESULTS）

        如果還有物品在拍，先依目前的出價結算，避免留下 ACTIVE 的游標。
        """
        LobbyStateMachine.require(db, LobbyStatus.LIVE, LobbyStatus.PAUSED)
        state = get_auction_state(db, lock=True)
        if state.status == AuctionStatus.ACTIVE:
            _resolve(db, state)
        return LobbyStateMachine.transition(db, LobbyStatus.RESULTS)

    @staticmethod
    @serialized
    @transactional
    def restart(db: Session):
        """
        重新開始（RESULTS -> LOCKED）

        重置：
        - AuctionState 回到 IDLE
        - 所有目錄物品回到 AVAILABLE、wasSent=False
        - 各隊 purse 回到初始值、清空 boughtItems
        """
        lobby = LobbyStateMachine.transition(db, LobbyStatus.LOCKED)

        state = get_auction_state(db, lock=True)
        _reset_state(state)
        touch(db, state)

        for item in db.query(CatalogueEntry).all():
            if item.status != ItemStatus.AVAILABLE or item.was_sent:
                item.status = ItemStatus.AVAILABLE
                item.was_sent = False
                item.sold_to_team_id = None
                item.sold_price = None
                touch(db, item)

        for team in db.query(Team).all():
            team.purse = settings.starting_purse
            team.bought_items.clear()
            touch(db, team)

        logger.info("Auction restarted, catalogue and purses reset")
        return lobby

    # ============ 目錄游標 ============

    @staticmethod
    @serialized
    @transactional
    def select_item(db: Session, item_id: int) -> AuctionState:
        """
        把指定物品推上拍賣台

        異常：
            InvalidPhaseError: 大廳不是 LIVE，或物品不屬於目前 phase
            ItemInProgressError: 還有物品在拍
            ItemNotFound: 物品不存在
            AlreadySoldError: 物品已售出（SOLD 的物品永遠不會再回到 ACTIVE）
        """
        _require_live(db)
        state = get_auction_state(db, lock=True)
        if state.status == AuctionStatus.ACTIVE:
            raise ItemInProgressError(state.current_item.name)

        item = with_item_lock(item_id, db).first()
        if not item:
            raise ItemNotFound(item_id)
        if item.status == ItemStatus.SOLD:
            raise AlreadySoldError(item.name)
        if item.phase != state.phase:
            raise InvalidPhaseError(
                f"{item.name} belongs to {item.phase.value}, current phase is {state.phase.value}"
            )

        return _activate(db, state, item)

    @staticmethod
    @serialized
    @transactional
    def select_next_item(db: Session) -> AuctionState:
        """
        把目前 phase 佇列中第一個尚未送出的物品推上拍賣台

        異常：
            QueueExhaustedError: 這個 phase 沒有剩下的物品
        """
        _require_live(db)
        state = get_auction_state(db, lock=True)
        if state.status == AuctionStatus.ACTIVE:
            raise ItemInProgressError(state.current_item.name)

        item = _next_in_queue(db, state.phase)
        if item is None:
            raise QueueExhaustedError(state.phase)
        return _activate(db, state, item)

    @staticmethod
    @serialized
    @transactional
    def change_phase(db: Session, phase: Phase) -> AuctionState:
        """
        切換 phase，游標回到該 phase 第一個尚未送出的物品

        已結算的物品不受影響。拍賣進行中的物品必須先結算。
        """
        LobbyStateMachine.require(db, LobbyStatus.LIVE, LobbyStatus.PAUSED)
        state = get_auction_state(db, lock=True)
        if state.status == AuctionStatus.ACTIVE:
            raise ItemInProgressError(state.current_item.name)

        previous = state.phase
        state.phase = phase
        touch(db, state)
        logger.info(f"Phase {previous.value} -> {phase.value}")
        return state

    # ============ 出價 ============

    @staticmethod
    @serialized
    @transactional
    def submit_bid(db: Session, team_id: str, expected_bid: Optional[int] = None) -> AuctionState:
        """
        出價（固定加價 bid_increment）

        並發保證：
            在 writer_lock 內對 currentBid 做 compare-and-set。兩個同時到達的出價，
            第二個看到的是已經加價後的 currentBid，並以新的值重新驗證。

        參數：
            team_id: 出價隊伍
            expected_bid: 客戶端看到的 currentBid（可選）；不一致時拒絕

        異常：
            NoActiveItemError: 沒有物品在拍
            AuctionPausedError: 拍賣暫停中
            TimeExpiredError: 時間已到
            TeamNotFound: 隊伍不存在
            StaleBidError: expected_bid 已過期
            AlreadyHighestBidderError: 自己已經是最高出價者
            InsufficientPurseError: purse < currentBid + increment
        """
        state = get_auction_state(db, lock=True)
        if state.status != AuctionStatus.ACTIVE:
            raise NoActiveItemError()
        if get_lobby(db).status != LobbyStatus.LIVE:
            raise AuctionPausedError()
        if state.timer_seconds <= 0:
            raise TimeExpiredError()

        team = with_team_lock(team_id, db).first()
        if not team:
            raise TeamNotFound(team_id)

        if expected_bid is not None and expected_bid != state.current_bid:
            raise StaleBidError(expected_bid, state.current_bid)
        if state.highest_bidder_team_id == team.id:
            raise AlreadyHighestBidderError()

        required = state.current_bid + settings.bid_increment
        if team.purse < required:
            raise InsufficientPurseError(team.purse, required)

        state.current_bid = required
        state.highest_bidder_team_id = team.id
        state.highest_bidder = team
        if settings.reset_timer_on_bid:
            state.timer_seconds = settings.bid_timer_seconds
        touch(db, state)

        logger.info(f"Team {team.id} bid {required} on item {state.current_item_id}")
        return state

    # ============ 計時與結算 ============

    @staticmethod
    @serialized
    @transactional
    def tick(db: Session, elapsed: int = 1) -> Optional[AuctionState]:
        """
        伺服器時鐘的一拍

        只有在大廳 LIVE 且有物品 ACTIVE 時才倒數（PAUSED 時計時凍結）。
        倒數到 0 時結算；auto_advance 開啟時接著推上下一個物品。

        返回：
            有變動時回傳 AuctionState，否則 None
        """
        if get_lobby(db).status != LobbyStatus.LIVE:
            return None
        state = get_auction_state(db, lock=True)
        if state.status != AuctionStatus.ACTIVE:
            return None

        state.timer_seconds = max(0, state.timer_seconds - elapsed)
        touch(db, state)
        if state.timer_seconds > 0:
            return state

        _resolve(db, state)
        if settings.auto_advance:
            item = _next_in_queue(db, state.phase)
            if item is not None:
                _activate(db, state, item)
        return state

    @staticmethod
    @serialized
    @transactional
    def resolve(db: Session) -> AuctionState:
        """
        立即結算當前物品（冪等：已結算或沒有物品時不做任何事）
        """
        state = get_auction_state(db, lock=True)
        if state.status != AuctionStatus.ACTIVE:
            return state
        return _resolve(db, state)

    # ============ 目錄 ============

    @staticmethod
    def list_items(db: Session, phase: Optional[Phase] = None) -> List[CatalogueEntry]:
        query = db.query(CatalogueEntry)
        if phase is not None:
            query = query.filter(CatalogueEntry.phase == phase)
        return query.order_by(CatalogueEntry.id).all()

    @staticmethod
    def queue(db: Session, phase: Phase) -> List[CatalogueEntry]:
        """該 phase 尚未送出、仍可拍賣的物品（依 id 排序）"""
        return _queue_query(db, phase).all()

    @staticmethod
    @serialized
    @transactional
    def load_catalogue(db: Session, entries: Iterable[Dict[str, Any]]) -> List[CatalogueEntry]:
        """
        匯入 / 更新目錄物品

        每筆 entry：id, name, phase, basePrice，可選 kind, role, importanceScore。
        kind 省略時由 phase 推得（ACCESSORIES -> ACCESSORY，其他 -> PLAYER）。
        已售出的物品只更新描述欄位，不會改變售出狀態。

        異常：
            ValidationError: kind 與 phase 不一致、價格或分數超出範圍
        """
        state = get_auction_state(db)
        loaded = []
        for entry in entries:
            try:
                phase = Phase(entry["phase"])
                kind = ItemKind(entry.get("kind") or (
                    ItemKind.ACCESSORY if phase == Phase.ACCESSORIES else ItemKind.PLAYER
                ))
            except ValueError as e:
                raise ValidationError(f"Item {entry['id']}: {e}")
            if (phase == Phase.ACCESSORIES) != (kind == ItemKind.ACCESSORY):
                raise ValidationError(
                    f"Item {entry['id']}: kind {kind.value} does not match phase {phase.value}"
                )
            base_price = entry["basePrice"]
            if base_price <= 0:
                raise ValidationError(f"Item {entry['id']}: basePrice must be positive")
            score = entry.get("importanceScore", 0) or 0
            if score < 0 or score > 10:
                raise ValidationError(f"Item {entry['id']}: importanceScore must be 0..10")

            item = db.query(CatalogueEntry).filter(CatalogueEntry.id == entry["id"]).first()
            if item is None:
                item = CatalogueEntry(
                    id=entry["id"],
                    status=ItemStatus.AVAILABLE,
                    was_sent=False,
                    version=0,
                )
                db.add(item)
            elif state.status == AuctionStatus.ACTIVE and state.current_item_id == item.id:
                raise ItemInProgressError(item.name)

            item.name = entry["name"]
            item.kind = kind
            item.role = entry.get("role")
            item.phase = phase
            item.base_price = base_price
            item.importance_score = score
            touch(db, item)
            loaded.append(item)

        logger.info(f"Loaded {len(loaded)} catalogue entries")
        return loaded
