"""
Great Pearl Coffee Finance - Finance Settings Router

Finance staff read the desk configuration; administrators change it one
category at a time.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import require_admin, require_finance_access
from app.models.employee import Employee
from app.services.finance_settings_service import get_finance_settings_service

router = APIRouter(prefix="/settings/finance", tags=["Finance Settings"])


@router.get("", summary="All finance settings")
async def get_finance_settings(
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
) -> Dict[str, Dict[str, Any]]:
    service = get_finance_settings_service(db)
    return {category: values.model_dump(mode="json") for category, values in (await service.get_all()).items()}


@router.get("/{category}", summary="One settings category")
async def get_settings_category(
    category: str,
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_finance_access),
) -> Dict[str, Any]:
    service = get_finance_settings_service(db)
    return (await service.get_category(category)).model_dump(mode="json")


@router.put("/{category}", summary="Update one settings category")
async def update_settings_category(
    category: str,
    changes: Dict[str, Any],
    db: AsyncSession = Depends(get_db),
    current_employee: Employee = Depends(require_admin),
) -> Dict[str, Any]:
    """Save the given keys; keys left out keep their current value."""
    service = get_finance_settings_service(db)
    updated = await service.update_category(category, changes, current_employee)
    return updated.model_dump(mode="json")
