"""
Great Pearl Coffee Finance - Routers Package

FastAPI route handlers.

Routers:
- employees: Staff directory and the current user's capabilities
- approvals: Expense, requisition and salary approval workflow
- cash: Cash balance, ledger, deposits and dashboard figures
- payments: Coffee lot payments, supplier advances, expense book
- notifications: Notification bell
- reports: Income statement, balance sheet, daily statement
- verifications: Public verification portal and its admin endpoints
- security: Security questions for step-up approval
- withdrawals: Staff withdrawals with SMS / security-question step-up
- settings: Finance desk configuration
- websocket: Realtime change feed
"""

from app.routers import (
    employees,
    approvals,
    cash,
    payments,
    notifications,
    reports,
    verifications,
    security,
    withdrawals,
    settings,
    websocket,
)

__all__ = [
    "employees",
    "approvals",
    "cash",
    "payments",
    "notifications",
    "reports",
    "verifications",
    "security",
    "withdrawals",
    "settings",
    "websocket",
]
