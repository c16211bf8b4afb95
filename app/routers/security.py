"""
Great Pearl Coffee Finance - Security Questions Router

Each user keeps three security questions as the alternative step-up proof
for approving withdrawals.
"""

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_employee
from app.models.employee import Employee
from app.services.security_questions_service import QUESTION_COUNT, get_security_questions_service

router = APIRouter(prefix="/security-questions", tags=["Security Questions"])


# ===========================================
# REQUEST/RESPONSE SCHEMAS
# ===========================================

class SecurityQuestionsSetup(BaseModel):
    questions: List[str] = Field(..., min_length=QUESTION_COUNT, max_length=QUESTION_COUNT)
    answers: List[str] = Field(..., min_length=QUESTION_COUNT, max_length=QUESTION_COUNT)


class SecurityQuestionsResponse(BaseModel):
    questions: List[str]


class SecurityAnswersRequest(BaseModel):
    answers: List[str] = Field(..., min_length=QUESTION_COUNT, max_length=QUESTION_COUNT)


class SecurityAnswersResponse(BaseModel):
    verified: bool


# ===========================================
# ENDPOINTS
# ===========================================

@router.put("", response_model=SecurityQuestionsResponse, summary="Set up my security questions")
async def setup_security_questions(
    request: SecurityQuestionsSetup,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    """Create or replace my questions. Answers are stored as digests only."""
    service = get_security_questions_service(db)
    row = await service.setup(current_employee.email, request.questions, request.answers)
    return SecurityQuestionsResponse(questions=row.questions)


@router.get("", response_model=SecurityQuestionsResponse, summary="My security questions")
async def get_security_questions(
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    service = get_security_questions_service(db)
    return SecurityQuestionsResponse(questions=await service.get_questions(current_employee.email))


@router.post("/verify", response_model=SecurityAnswersResponse, summary="Check my answers")
async def verify_security_answers(
    request: SecurityAnswersRequest,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(get_current_employee),
):
    service = get_security_questions_service(db)
    return SecurityAnswersResponse(verified=await service.verify(current_employee.email, request.answers))
