"""Video session model definitions."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String

from telehealth.database import Base


class VideoSession(Base):
    """The live-call resource bound one-to-one to an appointment."""
    __tablename__ = "video_sessions"

    id = Column(String(36), primary_key=True)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False, unique=True)
    session_id = Column(String, nullable=False)
    room_url = Column(String)
    status = Column(String, nullable=False)
    started_at = Column(DateTime)
    ended_at = Column(DateTime)
    duration_seconds = Column(Integer)
    participants = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
