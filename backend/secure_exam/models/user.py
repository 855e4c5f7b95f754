from sqlalchemy import Column, String, DateTime, Integer
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.timezone import utc_now


class UserRole:
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"

    ALL = (STUDENT, INSTRUCTOR, ADMIN)
    STAFF = (INSTRUCTOR, ADMIN)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=False, default=UserRole.STUDENT)
    created_at = Column(DateTime, default=utc_now)

    exams = relationship("Exam", back_populates="instructor", lazy="noload")
    attempts = relationship("ExamAttempt", back_populates="student", lazy="noload")

    @property
    def is_staff(self) -> bool:
        return self.role in UserRole.STAFF

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
