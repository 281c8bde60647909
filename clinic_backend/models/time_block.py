"""Time block model definitions."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Date, DateTime, String

from clinic_backend.database import Base

TIME_BLOCK_TYPES = ('break', 'admin', 'meeting', 'other')
RECURRENCE_TYPES = ('daily', 'weekly', 'custom')


class TimeBlock(Base):
    """Represents a span of the day a clinician is unavailable."""
    __tablename__ = "time_blocks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    reason = Column(String, nullable=False)
    type = Column(String, nullable=False, default='other')
    # {"type", "end_date", "days_of_week"}; informational, not expanded into occurrences
    recurrence = Column(JSON)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    created_by = Column(String)
