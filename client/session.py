"""
客戶端 session

取代「目前使用者」全域變數：登入時建立、登出時清除，
明確傳給導覽判斷以及每一個送出的 intent。
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from core.exceptions import ValidationError
from services.navigation_service import Role

# intent -> 需要自動帶入 enrollment id 的欄位
_ENROLLMENT_FIELDS = {
    "REGISTER_USER": "enrollment",
    "joinTeam": "enrollment",
    "createTeam": "creatorEnrollmentId",
}

ADMIN_INTENTS = {
    "adminLockTeams",
    "adminReopenTeams",
    "adminRemoveMember",
    "adminUpdateTeam",
    "adminDeleteTeam",
}


@dataclass
class ClientSession:
    role: Role
    enrollment_id: Optional[str] = None
    name: Optional[str] = None
    admin_token: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


class SessionContext:

    def __init__(self):
        self._session: Optional[ClientSession] = None

    @property
    def current(self) -> Optional[ClientSession]:
        return self._session

    @property
    def role(self) -> Role:
        return self._session.role if self._session else Role.ANONYMOUS

    def login(self, enrollment_id: str, name: Optional[str] = None) -> ClientSession:
        if not enrollment_id or not enrollment_id.strip():
            raise ValidationError("Enrollment number is required")
        self._session = ClientSession(
            role=Role.PARTICIPANT, enrollment_id=enrollment_id.strip(), name=name
        )
        return self._session

    def login_admin(self, token: str) -> ClientSession:
        if not token:
            raise ValidationError("Admin token is required")
        self._session = ClientSession(role=Role.ADMIN, admin_token=token)
        return self._session

    def logout(self) -> None:
        self._session = None

    def intent(self, event: str, **data: Any) -> Dict[str, Any]:
        """
        組出送出的 intent `{event, data, requestId}`

        參賽者 intent 自動帶入 session 的 enrollment id；
        非管理員 session 送管理員 intent 時直接拒絕，不會送出。
        """
        if self._session is None:
            raise ValidationError("Not logged in")
        if event in ADMIN_INTENTS and self._session.role != Role.ADMIN:
            raise ValidationError(f"{event} requires an admin session")

        field_name = _ENROLLMENT_FIELDS.get(event)
        if field_name and self._session.enrollment_id:
            data.setdefault(field_name, self._session.enrollment_id)

        return {"event": event, "data": data, "requestId": str(uuid.uuid4())}
