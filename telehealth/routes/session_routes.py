from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from telehealth.core import errors
from telehealth.routes.dependencies import (
    current_time,
    ensure_database_ready,
    get_db,
    to_http_exception,
    video_session_manager,
)
from telehealth.routes.scheduling_routes import ParticipantRequest

router = APIRouter(tags=['sessions'])


class MediaStateRequest(ParticipantRequest):
    audio_enabled: bool = True
    video_enabled: bool = True
    screen_sharing: bool = False


class VideoSessionResponse(BaseModel):
    id: str
    appointment_id: str
    session_id: str
    room_url: str | None = None
    status: str
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    participants: list[dict[str, Any]]

    class Config:
        from_attributes = True


class MediaStateResponse(BaseModel):
    session_id: str
    audio_enabled: bool
    video_enabled: bool
    screen_sharing: bool


@router.post('/appointments/{appointment_id}/start', response_model=VideoSessionResponse)
def start_session(appointment_id: str, data: ParticipantRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        session = video_session_manager(db).start(appointment_id, data.requester_id, current_time())
    except errors.SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return VideoSessionResponse.model_validate(session)


@router.post('/{session_id}/end', response_model=VideoSessionResponse)
def end_session(session_id: str, data: ParticipantRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        session = video_session_manager(db).end(session_id, data.requester_id, current_time())
    except errors.SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return VideoSessionResponse.model_validate(session)


@router.post('/{session_id}/media', response_model=MediaStateResponse)
def update_media_state(session_id: str, data: MediaStateRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        media = video_session_manager(db).set_media_state(
            session_id,
            data.requester_id,
            audio_enabled=data.audio_enabled,
            video_enabled=data.video_enabled,
            screen_sharing=data.screen_sharing,
        )
    except errors.SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return MediaStateResponse(
        session_id=media.session_id,
        audio_enabled=media.audio_enabled,
        video_enabled=media.video_enabled,
        screen_sharing=media.screen_sharing,
    )
