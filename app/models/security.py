"""
Great Pearl Coffee Finance - Security Questions Model

Three question/answer pairs per user, used as an alternative step-up
check when approving withdrawals. Only answer digests are stored.
"""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class UserSecurityQuestions(BaseModel):
    """Security questions for one user (one row per email)."""

    __tablename__ = "user_security_questions"

    user_email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    question_1: Mapped[str] = mapped_column(String(500), nullable=False)
    answer_1_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    question_2: Mapped[str] = mapped_column(String(500), nullable=False)
    answer_2_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    question_3: Mapped[str] = mapped_column(String(500), nullable=False)
    answer_3_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def questions(self) -> list:
        return [self.question_1, self.question_2, self.question_3]

    @property
    def answer_hashes(self) -> list:
        return [self.answer_1_hash, self.answer_2_hash, self.answer_3_hash]
