"""
資料模型（State Store）

所有共享狀態都存在這裡，只有權威行程（authority process）能寫入：
- Participant / Team / TeamMember / BoughtItem：組隊與購買紀錄
- LobbySettings：大廳狀態（單例，id=1）
- CatalogueEntry：拍賣目錄（球員與配件）
- AuctionState：當前拍賣游標（單例，id=1）

每個會被廣播的文件都有 version 欄位，每次變更 +1，
客戶端用它丟棄過期的快照。
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
)
from sqlalchemy.orm import relationship

from database import Base


LOBBY_ID = 1
AUCTION_STATE_ID = 1


class LobbyStatus(str, enum.Enum):
    OPEN = "OPEN"
    LOCKED = "LOCKED"
    STARTING = "STARTING"
    LIVE = "LIVE"
    PAUSED = "PAUSED"
    RESULTS = "RESULTS"


class Phase(str, enum.Enum):
    BATTERS = "BATTERS"
    BOWLERS = "BOWLERS"
    ACCESSORIES = "ACCESSORIES"


class ItemKind(str, enum.Enum):
    PLAYER = "PLAYER"
    ACCESSORY = "ACCESSORY"


class ItemStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    SOLD = "SOLD"
    UNSOLD = "UNSOLD"


class AuctionStatus(str, enum.Enum):
    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    UNSOLD = "UNSOLD"


def _uuid() -> str:
    return str(uuid.uuid4())


class Participant(Base):
    __tablename__ = "participants"

    enrollment_id = Column(String(64), primary_key=True)
    name = Column(String(128), nullable=False)
    phone = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Team(Base):
    __tablename__ = "teams"
    __table_args__ = (
        CheckConstraint("purse >= 0", name="ck_team_purse_non_negative"),
        CheckConstraint("max_size >= 1 AND max_size <= 5", name="ck_team_max_size"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(64), nullable=False)
    max_size = Column(Integer, nullable=False)
    purse = Column(Integer, nullable=False)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    members = relationship(
        "TeamMember",
        back_populates="team",
        order_by="TeamMember.position",
        cascade="all, delete-orphan",
    )
    bought_items = relationship(
        "BoughtItem",
        back_populates="team",
        order_by="BoughtItem.id",
        cascade="all, delete-orphan",
    )

    @property
    def member_ids(self):
        return [m.enrollment_id for m in self.members]

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.max_size


class TeamMember(Base):
    """一位參與者最多只能出現在一個隊伍（enrollment_id UNIQUE）"""
    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(String(36), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    enrollment_id = Column(
        String(64), ForeignKey("participants.enrollment_id"), nullable=False, unique=True
    )
    position = Column(Integer, nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    team = relationship("Team", back_populates="members")


class BoughtItem(Base):
    __tablename__ = "bought_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(String(36), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    item_id = Column(Integer, ForeignKey("catalogue.id"), nullable=False)
    name = Column(String(128), nullable=False)
    role = Column(String(64), nullable=True)
    kind = Column(Enum(ItemKind), nullable=False)
    price = Column(Integer, nullable=False)

    team = relationship("Team", back_populates="bought_items")


class LobbySettings(Base):
    __tablename__ = "lobby_settings"

    id = Column(Integer, primary_key=True, default=LOBBY_ID)
    status = Column(Enum(LobbyStatus), nullable=False, default=LobbyStatus.OPEN)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CatalogueEntry(Base):
    __tablename__ = "catalogue"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(128), nullable=False)
    kind = Column(Enum(ItemKind), nullable=False)
    role = Column(String(64), nullable=True)
    phase = Column(Enum(Phase), nullable=False)
    base_price = Column(Integer, nullable=False)
    importance_score = Column(Integer, nullable=False, default=0)
    status = Column(Enum(ItemStatus), nullable=False, default=ItemStatus.AVAILABLE)
    was_sent = Column(Boolean, nullable=False, default=False)
    sold_to_team_id = Column(String(36), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True)
    sold_price = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=0)


class AuctionState(Base):
    __tablename__ = "auction_state"

    id = Column(Integer, primary_key=True, default=AUCTION_STATE_ID)
    current_item_id = Column(Integer, ForeignKey("catalogue.id"), nullable=True)
    current_bid = Column(Integer, nullable=False, default=0)
    highest_bidder_team_id = Column(
        String(36), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True
    )
    timer_seconds = Column(Integer, nullable=False, default=0)
    status = Column(Enum(AuctionStatus), nullable=False, default=AuctionStatus.IDLE)
    phase = Column(Enum(Phase), nullable=False, default=Phase.BATTERS)
    # {"itemId", "itemName", "outcome", "teamId", "teamName", "price"}
    last_resolution = Column(JSON, nullable=True)
    version = Column(Integer, nullable=False, default=0)

    current_item = relationship("CatalogueEntry")
    highest_bidder = relationship("Team")
