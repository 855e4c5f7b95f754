from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, JSON

from ..core.database import Base
from ..utils.timezone import utc_now


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("exam_attempts.id", ondelete="CASCADE"), index=True, nullable=False)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime, default=utc_now)
    event_type = Column(String, index=True)  # exam_start, answer_saved, exam_submitted, focus_change, ...
    event_data = Column(JSON, nullable=True)
