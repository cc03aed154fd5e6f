"""
Pydantic schemas：HTTP 請求 / 回應與 WebSocket intent 的格式

欄位名稱沿用前端的 camelCase。
"""
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field

from models import ItemKind, Phase


class MessageResponse(BaseModel):
    message: str


# ============ Participant ============

class ParticipantCreate(BaseModel):
    enrollmentId: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=128)
    phone: Optional[str] = Field(None, max_length=32)


class ParticipantResponse(BaseModel):
    enrollmentId: str
    name: str
    phone: Optional[str] = None
    teamId: Optional[str] = None
    online: bool = False


# ============ Catalogue / Auction ============

class CatalogueEntryIn(BaseModel):
    id: int
    name: str = Field(..., min_length=1, max_length=128)
    phase: Phase
    basePrice: int = Field(..., gt=0)
    kind: Optional[ItemKind] = None
    role: Optional[str] = None
    importanceScore: int = Field(0, ge=0, le=10)


class CatalogueLoad(BaseModel):
    players: List[CatalogueEntryIn]


class SelectItemRequest(BaseModel):
    playerId: int


class ChangePhaseRequest(BaseModel):
    phase: Phase


class BidRequest(BaseModel):
    teamId: str
    expectedBid: Optional[int] = None


class BidResponse(BaseModel):
    message: str
    currentBid: int
    highestBidder: str


class NavigationResponse(BaseModel):
    screen: str
    paused: bool
    showResolution: bool


class StateResponse(BaseModel):
    lobby: Dict[str, Any]
    teams: List[Dict[str, Any]]
    auction: Optional[Dict[str, Any]] = None
    onlineParticipants: List[str] = []


# ============ WebSocket intents ============

class RegisterUserIntent(BaseModel):
    # 舊版客戶端送 enrollmentId
    enrollment: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("enrollment", "enrollmentId")
    )


class CreateTeamIntent(BaseModel):
    name: str
    maxSize: int
    creatorEnrollmentId: str


class JoinTeamIntent(BaseModel):
    teamId: str
    enrollment: str


class RemoveMemberIntent(BaseModel):
    teamId: str
    enrollmentNumber: str


class UpdateTeamIntent(BaseModel):
    teamId: str
    name: Optional[str] = None
    maxSize: Optional[int] = None


class DeleteTeamIntent(BaseModel):
    teamId: str
