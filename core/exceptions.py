"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理。

分類：
- ValidationError：輸入不合法，還沒碰到 Store 就被拒絕
- ContentionError：搶輸了（名額被搶走、別隊先出價），不是 bug
- StateError：目前大廳 / 拍賣狀態不允許這個操作
- NotFoundError：目標不存在
- ConnectivityError：連線中斷（客戶端會重連並重新取得快照）

每個類別帶 status_code，API 層直接拿來回應。
"""


class AuctionError(Exception):
    """所有拍賣異常的基類"""
    status_code = 400


class ValidationError(AuctionError):
    status_code = 400


class ContentionError(AuctionError):
    status_code = 409


class StateError(AuctionError):
    status_code = 409


class NotFoundError(AuctionError):
    status_code = 404


class ConnectivityError(AuctionError):
    status_code = 503


# ============ Team 相關異常 ============

class TeamNotFound(NotFoundError):
    def __init__(self, team_id):
        self.team_id = team_id
        super().__init__(f"Team {team_id} not found")


class ParticipantNotFound(ValidationError):
    def __init__(self, enrollment_id):
        self.enrollment_id = enrollment_id
        super().__init__(f"Participant {enrollment_id} is not registered")


class CapacityError(ContentionError):
    """隊伍已滿（通常是和別人搶最後一個名額搶輸了）"""
    def __init__(self, team_name, max_size):
        self.max_size = max_size
        super().__init__(f"Team {team_name} is full ({max_size}/{max_size})")


class AlreadyAssignedError(ValidationError):
    def __init__(self, enrollment_id):
        self.enrollment_id = enrollment_id
        super().__init__(f"Participant {enrollment_id} is already in a team")


class InvalidSizeError(ValidationError):
    pass


class LobbyClosedError(StateError):
    def __init__(self, status):
        self.status = status
        super().__init__(f"Lobby is not open (status: {status.value})")


class UnassignedParticipantsError(StateError):
    def __init__(self, count):
        self.count = count
        super().__init__(
            f"Cannot lock lobby: {count} participants are not assigned to any team"
        )


class EmptyTeamError(StateError):
    def __init__(self, team_names):
        self.team_names = team_names
        super().__init__(
            "Cannot lock lobby: one or more teams have no members "
            f"({', '.join(team_names)})"
        )


# ============ 狀態轉換異常 ============

class InvalidStateTransition(StateError):
    """非法的狀態轉換"""
    pass


# ============ Auction 相關異常 ============

class ItemNotFound(NotFoundError):
    def __init__(self, item_id):
        self.item_id = item_id
        super().__init__(f"Item {item_id} not found")


class InvalidPhaseError(StateError):
    pass


class AlreadySoldError(StateError):
    def __init__(self, item_name):
        super().__init__(f"{item_name} is already sold")


class ItemInProgressError(StateError):
    def __init__(self, item_name):
        super().__init__(f"{item_name} is still under the hammer")


class QueueExhaustedError(StateError):
    def __init__(self, phase):
        self.phase = phase
        super().__init__(f"No unsent items left in phase {phase.value}")


class NoActiveItemError(StateError):
    def __init__(self):
        super().__init__("No item is currently up for bidding")


class AuctionPausedError(StateError):
    def __init__(self):
        super().__init__("Auction is paused")


class TimeExpiredError(StateError):
    def __init__(self):
        super().__init__("Time is up! Bidding closed")


class InsufficientPurseError(ValidationError):
    def __init__(self, purse, required):
        self.purse = purse
        self.required = required
        super().__init__(f"Insufficient purse: need {required}, have {purse}")


class AlreadyHighestBidderError(ContentionError):
    def __init__(self):
        super().__init__("Your team is already the highest bidder")


class StaleBidError(ContentionError):
    """客戶端看到的出價已經過期（別隊先加價了）"""
    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Bid moved on: expected {expected}, current is {actual}")
