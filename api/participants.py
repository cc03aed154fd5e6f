"""
Participant API Endpoints

職責：
1. 參與者註冊（完整的 CRUD 由外部系統負責，這裡只提供最小介面）
2. 查詢參與者與分隊 / 上線狀態
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import Participant, TeamMember
from schemas import ParticipantCreate, ParticipantResponse
from core.presence import presence

router = APIRouter(prefix="/api/participants", tags=["participants"])
logger = logging.getLogger(__name__)


@router.post("", response_model=ParticipantResponse)
def register_participant(data: ParticipantCreate, db: Session = Depends(get_db)):
    """
    註冊參與者

    enrollmentId 重複時回 409。
    """
    try:
        existing = db.query(Participant).filter(
            Participant.enrollment_id == data.enrollmentId
        ).first()
        if existing:
            raise HTTPException(
                status_code=409,
                detail=f"Participant {data.enrollmentId} already registered"
            )

        participant = Participant(
            enrollment_id=data.enrollmentId,
            name=data.name,
            phone=data.phone
        )
        db.add(participant)
        db.commit()

        logger.info(f"Participant {participant.enrollment_id} ({participant.name}) registered")

        return ParticipantResponse(
            enrollmentId=participant.enrollment_id,
            name=participant.name,
            phone=participant.phone
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to register participant: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("", response_model=List[ParticipantResponse])
def list_participants(db: Session = Depends(get_db)):
    """列出所有參與者，附上所屬隊伍與是否在線"""
    online = set(presence.online())
    teams = {m.enrollment_id: m.team_id for m in db.query(TeamMember).all()}
    participants = db.query(Participant).order_by(Participant.created_at).all()
    return [
        ParticipantResponse(
            enrollmentId=p.enrollment_id,
            name=p.name,
            phone=p.phone,
            teamId=teams.get(p.enrollment_id),
            online=p.enrollment_id in online
        )
        for p in participants
    ]
