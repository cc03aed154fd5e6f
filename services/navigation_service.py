"""
導航閘門：由狀態決定畫面

純函式，不讀也不寫任何狀態。每個客戶端用同一份規則，
所以中途重連的客戶端只要拿到目前的快照，就會落在正確的畫面，
不需要看過之前的任何狀態轉換。

  OPEN            -> LOBBY（管理員：LOBBY_MANAGEMENT）
  LOCKED          -> TEAM_CARD（管理員：LOBBY_MANAGEMENT）
  STARTING        -> COUNTDOWN（管理員：AUCTION_CONTROL）
  LIVE / PAUSED   -> ARENA，PAUSED 時加上暫停遮罩（管理員：AUCTION_CONTROL）
  RESULTS / ENDED -> RESULTS（管理員：RESULTS_LOG）
"""
import enum
from dataclasses import dataclass
from typing import Optional, Union


class Role(str, enum.Enum):
    ANONYMOUS = "ANONYMOUS"
    PARTICIPANT = "PARTICIPANT"
    ADMIN = "ADMIN"


class Screen(str, enum.Enum):
    LOGIN = "LOGIN"
    LOBBY = "LOBBY"
    TEAM_CARD = "TEAM_CARD"
    COUNTDOWN = "COUNTDOWN"
    ARENA = "ARENA"
    RESULTS = "RESULTS"
    LOBBY_MANAGEMENT = "LOBBY_MANAGEMENT"
    AUCTION_CONTROL = "AUCTION_CONTROL"
    RESULTS_LOG = "RESULTS_LOG"


@dataclass(frozen=True)
class Navigation:
    screen: Screen
    paused: bool = False
    show_resolution: bool = False


_PARTICIPANT_SCREENS = {
    "OPEN": Screen.LOBBY,
    "LOCKED": Screen.TEAM_CARD,
    "STARTING": Screen.COUNTDOWN,
    "LIVE": Screen.ARENA,
    "PAUSED": Screen.ARENA,
    "RESULTS": Screen.RESULTS,
    "ENDED": Screen.RESULTS,
}

_ADMIN_SCREENS = {
    "OPEN": Screen.LOBBY_MANAGEMENT,
    "LOCKED": Screen.LOBBY_MANAGEMENT,
    "STARTING": Screen.AUCTION_CONTROL,
    "LIVE": Screen.AUCTION_CONTROL,
    "PAUSED": Screen.AUCTION_CONTROL,
    "RESULTS": Screen.RESULTS_LOG,
    "ENDED": Screen.RESULTS_LOG,
}

_RESOLVED = {"SOLD", "UNSOLD"}


def _value(status) -> Optional[str]:
    if status is None:
        return None
    return getattr(status, "value", status)


def resolve_screen(
    lobby_status: Union[str, enum.Enum, None],
    auction_status: Union[str, enum.Enum, None],
    role: Union[Role, str, None],
) -> Navigation:
    """
    決定客戶端應該顯示的畫面

    參數：
        lobby_status: LobbySettings.status（接受 enum 或字串，ENDED 視同 RESULTS）
        auction_status: AuctionState.status（IDLE / ACTIVE / SOLD / UNSOLD，可為 None）
        role: ANONYMOUS / PARTICIPANT / ADMIN（None 視同 ANONYMOUS）

    返回：
        Navigation(screen, paused, show_resolution)
    """
    role = Role(_value(role)) if role else Role.ANONYMOUS
    if role == Role.ANONYMOUS:
        return Navigation(Screen.LOGIN)

    lobby = _value(lobby_status)
    table = _ADMIN_SCREENS if role == Role.ADMIN else _PARTICIPANT_SCREENS
    screen = table.get(lobby)
    if screen is None:
        # 不認得的狀態：留在大廳，等下一份快照
        return Navigation(table["OPEN"])

    in_arena = lobby in ("LIVE", "PAUSED")
    return Navigation(
        screen=screen,
        paused=lobby == "PAUSED",
        show_resolution=in_arena and _value(auction_status) in _RESOLVED,
    )
