"""
Great Pearl Coffee Finance - Security Questions Service

Three question/answer pairs per user. Answers are normalised (lowercased,
trimmed) and stored as SHA-256 digests; verification requires all three.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.security import UserSecurityQuestions
from app.utils.error_handling import NotFoundException, ValidationException
from app.utils.security import digests_match, hash_security_answer

logger = logging.getLogger(__name__)

QUESTION_COUNT = 3


def _require_three(values: List[str], field: str) -> List[str]:
    if len(values) != QUESTION_COUNT or any(not (v or "").strip() for v in values):
        raise ValidationException(f"Exactly {QUESTION_COUNT} non-empty {field} are required", field=field)
    return values


class SecurityQuestionsService:
    """Service for setting up and checking security questions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_row(self, user_email: str, active_only: bool = True) -> Optional[UserSecurityQuestions]:
        query = select(UserSecurityQuestions).where(UserSecurityQuestions.user_email == user_email)
        if active_only:
            query = query.where(UserSecurityQuestions.is_active.is_(True))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def setup(self, user_email: str, questions: List[str], answers: List[str]) -> UserSecurityQuestions:
        """Create or replace the user's questions and answers."""
        questions = [q.strip() for q in _require_three(questions, "questions")]
        hashes = [hash_security_answer(a) for a in _require_three(answers, "answers")]

        row = await self._get_row(user_email, active_only=False)
        if row is None:
            row = UserSecurityQuestions(user_email=user_email)
            self.db.add(row)

        row.question_1, row.question_2, row.question_3 = questions
        row.answer_1_hash, row.answer_2_hash, row.answer_3_hash = hashes
        row.is_active = True

        await self.db.commit()
        await self.db.refresh(row)

        logger.info(f"Security questions set for {user_email}")
        return row

    async def get_questions(self, user_email: str) -> List[str]:
        """The user's three questions. Never returns answers or digests."""
        row = await self._get_row(user_email)
        if row is None:
            raise NotFoundException("Security questions", message=f"No security questions set up for {user_email}")
        return row.questions

    async def verify(self, user_email: str, answers: List[str]) -> bool:
        """True only when an active row exists and all three answers match."""
        if len(answers) != QUESTION_COUNT:
            return False

        row = await self._get_row(user_email)
        if row is None:
            logger.warning(f"Security question check for {user_email} without an active setup")
            return False

        matches = [
            digests_match(hash_security_answer(answer or ""), stored)
            for answer, stored in zip(answers, row.answer_hashes)
        ]
        verified = all(matches)
        if not verified:
            logger.warning(f"Security question check failed for {user_email}")
        return verified


def get_security_questions_service(db: AsyncSession) -> SecurityQuestionsService:
    """Factory function for dependency injection."""
    return SecurityQuestionsService(db)
