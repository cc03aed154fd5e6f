"""
Team Arbiter：組隊操作的唯一決策點

職責：
1. 建立 / 加入隊伍（參與者操作）
2. 移除成員、修改、刪除隊伍（管理員操作）
3. 鎖定 / 重新開放大廳

原則：
- 每個操作都是一個不可分割的步驟（writer_lock + transaction），不會只做一半
- 名額檢查與新增成員是同一步（check-and-append），絕不依賴客戶端的名額判斷
- 重複的 join 是冪等的：已經在同一隊就直接回傳，不會產生重複成員
"""
from typing import Iterable, List, Optional
import logging

from sqlalchemy.orm import Session

from models import (
    AuctionState,
    AuctionStatus,
    CatalogueEntry,
    LobbyStatus,
    Participant,
    Team,
    TeamMember,
)
from core.exceptions import (
    AlreadyAssignedError,
    CapacityError,
    EmptyTeamError,
    InvalidSizeError,
    LobbyClosedError,
    ParticipantNotFound,
    TeamNotFound,
    UnassignedParticipantsError,
    ValidationError,
)
from core.locks import serialized, with_auction_lock, with_team_lock
from core.state_machine import LobbyStateMachine, get_lobby
from core.sync import touch, touch_deleted
from database import transactional, settings

logger = logging.getLogger(__name__)

MIN_TEAM_SIZE = 1


def _validate_size(max_size) -> int:
    upper = min(settings.max_team_size, 5)
    if not isinstance(max_size, int) or isinstance(max_size, bool):
        raise ValidationError(f"Team size must be an integer between {MIN_TEAM_SIZE} and {upper}")
    if max_size < MIN_TEAM_SIZE or max_size > upper:
        raise ValidationError(
            f"Team size must be between {MIN_TEAM_SIZE} and {upper}, got {max_size}"
        )
    return max_size


def _validate_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Team name is required")
    return name.strip()


def _require_open(db: Session) -> None:
    lobby = get_lobby(db)
    if lobby.status != LobbyStatus.OPEN:
        raise LobbyClosedError(lobby.status)


def _require_participant(db: Session, enrollment_id: str) -> Participant:
    participant = None
    if enrollment_id:
        participant = db.query(Participant).filter(
            Participant.enrollment_id == enrollment_id
        ).first()
    if not participant:
        raise ParticipantNotFound(enrollment_id)
    return participant


def _membership(db: Session, enrollment_id: str) -> Optional[TeamMember]:
    return db.query(TeamMember).filter(TeamMember.enrollment_id == enrollment_id).first()


def _append_member(team: Team, enrollment_id: str) -> None:
    position = team.members[-1].position + 1 if team.members else 0
    team.members.append(TeamMember(enrollment_id=enrollment_id, position=position))

def _release_references(db: Session, team: Team) -> None:
    """
    清掉指向被刪除隊伍的外鍵（SQLite 不會執行 ondelete=SET NULL）

    - 目前最高出價者：清空，出價回到底價（沒有有效出價了）
    - 已售出的物品：soldToTeamId 清空，售出狀態與價格保留
    """
    state = with_auction_lock(db).first()
    if state is not None and state.highest_bidder_team_id == team.id:
        state.highest_bidder_team_id = None
        state.highest_bidder = None
        if state.status == AuctionStatus.ACTIVE and state.current_item is not None:
            state.current_bid = state.current_item.base_price
        touch(db, state)
        logger.info(f"Leading bid of deleted team {team.id} withdrawn")

    for item in db.query(CatalogueEntry).filter(CatalogueEntry.sold_to_team_id == team.id).all():
        item.sold_to_team_id = None
        touch(db, item)


class TeamArbiter:
    """組隊仲裁器"""

    @staticmethod
    @serialized
    @transactional
    def create_team(db: Session, name: str, max_size: int, creator_enrollment_id: str) -> Team:
        """
        建立新隊伍，建立者自動成為第一位成員

        前置條件：
        1. name 不可空白，max_size 介於 1..5
        2. 大廳狀態必須是 OPEN
        3. 建立者已註冊且尚未加入任何隊伍

        異常：
            ValidationError: 名稱或人數不合法
            ParticipantNotFound: 建立者未註冊
            LobbyClosedError: 大廳不是 OPEN
            AlreadyAssignedError: 建立者已在其他隊伍
        """
        name = _validate_name(name)
        max_size = _validate_size(max_size)
        _require_open(db)
        _require_participant(db, creator_enrollment_id)

        if _membership(db, creator_enrollment_id):
            raise AlreadyAssignedError(creator_enrollment_id)

        team = Team(name=name, max_size=max_size, purse=settings.starting_purse, version=0)
        _append_member(team, creator_enrollment_id)
        db.add(team)
        db.flush()
        touch(db, team)

        logger.info(
            f"Team {team.id} ({name}, max {max_size}) created by {creator_enrollment_id}"
        )
        return team

    @staticmethod
    @serialized
    @transactional
    def join_team(db: Session, team_id: str, enrollment_id: str) -> Team:
        """
        加入隊伍（冪等）

        並發保證：
            兩個人同時搶最後一個名額時，writer_lock 讓兩次 check-and-append 依序執行，
            第二個人看到的是已經 +1 的成員數，因此收到 CapacityError。

        流程：
        1. 大廳必須是 OPEN
        2. 鎖定 Team
        3. 已經是這隊成員 → 直接回傳（重送的 join 不會產生重複成員）
        4. 已經在別隊 → AlreadyAssignedError
        5. 名額已滿 → CapacityError
        6. 新增成員

        異常：
            LobbyClosedError, TeamNotFound, ParticipantNotFound,
            AlreadyAssignedError, CapacityError
        """
        _require_open(db)

        team = with_team_lock(team_id, db).first()
        if not team:
            raise TeamNotFound(team_id)

        _require_participant(db, enrollment_id)

        existing = _membership(db, enrollment_id)
        if existing:
            if existing.team_id == team.id:
                logger.info(f"Participant {enrollment_id} re-joined team {team.id}, no-op")
                return team
            raise AlreadyAssignedError(enrollment_id)

        if team.is_full:
            raise CapacityError(team.name, team.max_size)

        _append_member(team, enrollment_id)
        touch(db, team)

        logger.info(
            f"Participant {enrollment_id} joined team {team.id} "
            f"({len(team.members)}/{team.max_size})"
        )
        return team

    @staticmethod
    @serialized
    @transactional
    def remove_member(db: Session, team_id: str, enrollment_id: str) -> Optional[Team]:
        """
        移除成員（管理員，冪等）

        成員不在隊上或隊伍不存在都不算錯誤。
        """
        team = with_team_lock(team_id, db).first()
        if not team:
            return None

        member = next((m for m in team.members if m.enrollment_id == enrollment_id), None)
        if member is None:
            return team

        team.members.remove(member)
        touch(db, team)

        logger.info(f"Admin removed {enrollment_id} from team {team.id}")
        return team

    @staticmethod
    @serialized
    @transactional
    def update_team(
        db: Session,
        team_id: str,
        name: Optional[str] = None,
        max_size: Optional[int] = None,
    ) -> Team:
        """
        修改隊名 / 人數上限（管理員）

        異常：
            TeamNotFound: 隊伍不存在
            ValidationError: 名稱空白或人數超出範圍
            InvalidSizeError: 新上限小於目前成員數
        """
        team = with_team_lock(team_id, db).first()
        if not team:
            raise TeamNotFound(team_id)

        if name is not None:
            team.name = _validate_name(name)

        if max_size is not None:
            max_size = _validate_size(max_size)
            if max_size < len(team.members):
                raise InvalidSizeError(
                    f"Team {team.name} already has {len(team.members)} members, "
                    f"cannot shrink to {max_size}"
                )
            team.max_size = max_size

        touch(db, team)
        logger.info(f"Admin updated team {team.id}: name={team.name}, max_size={team.max_size}")
        return team

    @staticmethod
    @serialized
    @transactional
    def delete_team(db: Session, team_id: str) -> bool:
        """
        刪除隊伍（管理員）

        成員變回未分隊；隊伍不存在時什麼都不做。
        拍賣台上與目錄中指向這隊的參照會在同一個 transaction 內清掉。

        返回：
            True 如果真的刪除了隊伍
        """
        team = with_team_lock(team_id, db).first()
        if not team:
            return False

        _release_references(db, team)
        touch_deleted(db, team)
        db.delete(team)

        logger.info(f"Admin deleted team {team_id}, members {team.member_ids} unassigned")
        return True

    @staticmethod
    @serialized
    @transactional
    def lock_lobby(db: Session, online_ids: Iterable[str]):
        """
        鎖定大廳（OPEN -> LOCKED）

        前置條件：
        1. 所有「線上且已註冊」的參與者都已分隊
        2. 沒有空的隊伍

        參數：
            online_ids: 目前線上的 enrollment id（來自 PresenceRegistry）

        異常：
            UnassignedParticipantsError: 有人還沒分隊（附上人數）
            EmptyTeamError: 有隊伍沒有成員
            InvalidStateTransition: 大廳不是 OPEN
        """
        online = set(online_ids)
        registered_online = set()
        if online:
            registered_online = {
                p.enrollment_id
                for p in db.query(Participant).filter(Participant.enrollment_id.in_(online)).all()
            }
        assigned = {m.enrollment_id for m in db.query(TeamMember).all()}
        unassigned = registered_online - assigned
        if unassigned:
            raise UnassignedParticipantsError(len(unassigned))

        empty = [t.name for t in db.query(Team).all() if not t.members]
        if empty:
            raise EmptyTeamError(empty)

        return LobbyStateMachine.transition(db, LobbyStatus.LOCKED)

    @staticmethod
    @serialized
    @transactional
    def reopen_lobby(db: Session):
        """重新開放大廳（LOCKED -> OPEN）"""
        return LobbyStateMachine.transition(db, LobbyStatus.OPEN)

    @staticmethod
    def list_teams(db: Session) -> List[Team]:
        return db.query(Team).order_by(Team.created_at, Team.id).all()

    @staticmethod
    def get_team(db: Session, team_id: str) -> Team:
        team = db.query(Team).filter(Team.id == team_id).first()
        if not team:
            raise TeamNotFound(team_id)
        return team

    @staticmethod
    def team_of(db: Session, enrollment_id: str) -> Optional[Team]:
        membership = _membership(db, enrollment_id)
        return membership.team if membership else None
