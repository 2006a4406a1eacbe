"""
REST API Routes for SpendFlow.

All responses use the {"success", "data", "error"} envelope; domain
exceptions raised by services are mapped to error envelopes by the
handlers registered in create_app().

Endpoints (all under /api/v1 prefix):
- /health - Health check
- /obligations/process - Run the obligation processor for the caller
- /recurring-expenses - Recurring expense CRUD, upcoming, preview, summary
- /budgets - Budget status and recalculation
- /cards/{id}/payments, /cards/{id}/next-payment - Auto-payment views
- /notifications - Notification list and read state
- /billing/webhooks - Signed billing webhooks (public)
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from spendflow.api.auth import AuthToken
from spendflow.api.dependencies import (
    get_context,
    get_current_user_id,
    get_current_user_token,
    get_webhook_processor,
)
from spendflow.api.schemas import (
    RecurringExpenseCreate,
    RecurringExpenseUpdate,
    serialize,
    success_response,
)
from spendflow.billing.webhook import WebhookProcessor
from spendflow.core.context import ProcessingContext
from spendflow.infra.health import HealthCheckService, ServiceStatus
from spendflow.services.budgets import BudgetService, budget_period_end, compute_budget_status
from spendflow.services.cards import CardService
from spendflow.services.recurring_expenses import RecurringExpenseService
from spendflow.workflows.obligations import RecurringObligationProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


# =============================================================================
# Health
# =============================================================================


@router.get("/health")
async def health(ctx: ProcessingContext = Depends(get_context)) -> JSONResponse:
    report = await HealthCheckService(ctx.store, ctx.quota_breaker).check_all()
    status_code = 503 if report.status == ServiceStatus.UNHEALTHY else 200
    return JSONResponse(status_code=status_code, content=success_response(report.to_dict()))


# =============================================================================
# Obligations
# =============================================================================


@router.post("/obligations/process")
async def process_obligations(
    token: AuthToken = Depends(get_current_user_token),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    """Charge everything due today for the caller. Idempotent within a month."""
    report = await RecurringObligationProcessor(ctx).process(token.user_id, token.email)
    return success_response(report.to_dict())


# =============================================================================
# Recurring Expenses
# =============================================================================


@router.get("/recurring-expenses")
async def list_recurring_expenses(
    include_inactive: bool = False,
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    expenses = await RecurringExpenseService(ctx.store).list_for_user(user_id, include_inactive)
    return success_response([serialize(expense) for expense in expenses])


@router.post("/recurring-expenses", status_code=201)
async def create_recurring_expense(
    body: RecurringExpenseCreate,
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    expense = await RecurringExpenseService(ctx.store).create(
        user_id,
        name=body.name.strip(),
        amount=body.amount,
        card_id=body.card_id,
        day_of_month=body.day_of_month,
        category=body.category,
        frequency=body.frequency.value,
        start_date=body.start_date or ctx.today(),
        end_date=body.end_date,
    )
    return success_response(serialize(expense))


@router.get("/recurring-expenses/upcoming")
async def upcoming_recurring_expenses(
    days: int = Query(7, ge=0, le=366),
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    charges = await RecurringExpenseService(ctx.store).upcoming(user_id, ctx.today(), days)
    return success_response([charge.to_dict() for charge in charges])


@router.get("/recurring-expenses/preview")
async def preview_recurring_expenses(
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    """Expenses that would be charged if the processor ran now."""
    due = await RecurringExpenseService(ctx.store).preview(user_id, ctx.today())
    return success_response([serialize(expense) for expense in due])


@router.get("/recurring-expenses/summary")
async def recurring_expense_summary(
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    service = RecurringExpenseService(ctx.store)
    total = await service.monthly_total(user_id)
    by_category = await service.totals_by_category(user_id)
    return success_response(
        {
            "monthly_total": str(total),
            "by_category": {category: str(amount) for category, amount in by_category.items()},
        }
    )


@router.get("/recurring-expenses/{expense_id}")
async def get_recurring_expense(
    expense_id: str,
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    expense = await RecurringExpenseService(ctx.store).get(user_id, expense_id)
    return success_response(serialize(expense))


@router.patch("/recurring-expenses/{expense_id}")
async def update_recurring_expense(
    expense_id: str,
    body: RecurringExpenseUpdate,
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    expense = await RecurringExpenseService(ctx.store).update(user_id, expense_id, **body.changes())
    return success_response(serialize(expense))


@router.delete("/recurring-expenses/{expense_id}")
async def delete_recurring_expense(
    expense_id: str,
    hard: bool = False,
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    await RecurringExpenseService(ctx.store).delete(user_id, expense_id, hard=hard)
    return success_response({"id": expense_id, "deleted": True, "hard": hard})


# =============================================================================
# Budgets
# =============================================================================


@router.get("/budgets")
async def list_budgets(
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    today = ctx.today()
    budgets = await BudgetService(ctx.store, ctx.notifications).list_for_user(user_id)
    data = []
    for budget in budgets:
        status = compute_budget_status(
            budget.amount, budget.spent, budget_period_end(budget, today), today
        )
        data.append({**serialize(budget), "status": status.to_dict()})
    return success_response(data)


@router.get("/budgets/{budget_id}/status")
async def budget_status(
    budget_id: str,
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    status = await BudgetService(ctx.store, ctx.notifications).status(
        user_id, budget_id, ctx.today()
    )
    return success_response(status.to_dict())


@router.post("/budgets/{budget_id}/recalculate")
async def recalculate_budget(
    budget_id: str,
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    status = await BudgetService(ctx.store, ctx.notifications).recalculate(
        user_id, budget_id, ctx.today()
    )
    return success_response(status.to_dict())


# =============================================================================
# Cards
# =============================================================================


@router.get("/cards/{card_id}/payments")
async def card_payments(
    card_id: str,
    limit: int = Query(50, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    payments = await CardService(ctx.store).payment_history(user_id, card_id, limit)
    return success_response([serialize(payment) for payment in payments])


@router.get("/cards/{card_id}/next-payment")
async def card_next_payment(
    card_id: str,
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    upcoming = await CardService(ctx.store).next_payment(user_id, card_id, ctx.today())
    return success_response(upcoming.to_dict() if upcoming else None)


# =============================================================================
# Notifications
# =============================================================================


@router.get("/notifications")
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    notifications = await ctx.notifications.list_for_user(user_id, unread_only, limit)
    return success_response([serialize(notification) for notification in notifications])


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    ctx: ProcessingContext = Depends(get_context),
) -> dict[str, Any]:
    notification = await ctx.notifications.mark_read(user_id, notification_id)
    return success_response(serialize(notification))


# =============================================================================
# Billing
# =============================================================================


@router.post("/billing/webhooks")
async def billing_webhook(
    request: Request,
    webhooks: WebhookProcessor = Depends(get_webhook_processor),
) -> dict[str, Any]:
    """Signed webhook from the payment processor. Authenticated by signature only."""
    payload = await request.body()
    result = await webhooks.handle(payload, request.headers.get("Stripe-Signature"))
    return success_response(result.to_dict())
