"""API Routes for expenses"""
import datetime as dt
import logging
from typing import Annotated, Callable, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse, StreamingResponse

from config import Settings
from models.dashboard import DashboardView
from models.expense import Expense, ExpenseInput
from services.aggregation import build_dashboard_view
from services.auth_service import (
    Identity,
    ProviderKind,
    SessionState,
    identity_from_headers,
    sign_in_url,
    sign_out_url,
)
from services.dashboard_feed import stream_dashboard
from services.expenses_service import (
    ExpenseGateway,
    ExpenseNotFoundError,
    ExpenseOperationError,
    MissingUserIdError,
)

router = APIRouter()
auth_router = APIRouter()
logger = logging.getLogger(__name__)

# --- Dependency Functions ---

def get_settings(request: Request) -> Settings:
    return request.state.settings


def get_expense_gateway(request: Request) -> ExpenseGateway:
    """Dependency to get the expense gateway from the request state."""
    gateway = request.state.expense_gateway
    if gateway is None:
        logger.error("Expense gateway not found in application state. Check MongoDB connection.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return gateway


def get_current_identity(request: Request, settings: Annotated[Settings, Depends(get_settings)]) -> Identity:
    identity = identity_from_headers(request.headers, settings)
    if identity is None:
        raise HTTPException(status_code=401, detail="You must be signed in.")
    return identity


def get_today_fn() -> Callable[[], dt.date]:
    return dt.date.today


GatewayDep = Annotated[ExpenseGateway, Depends(get_expense_gateway)]
IdentityDep = Annotated[Identity, Depends(get_current_identity)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
TodayFnDep = Annotated[Callable[[], dt.date], Depends(get_today_fn)]


def _operation_failed(e: ExpenseOperationError) -> HTTPException:
    return HTTPException(status_code=503, detail=e.user_message)


# --- API Routes ---

@router.get("/session", summary="Current Session")
async def get_session(identity: IdentityDep):
    return SessionState(identity=identity, is_loading=False).model_dump(by_alias=True)


@router.get("/expenses", response_model=List[Expense], summary="Get Expenses", description="All of the signed-in user's expenses, newest first.")
async def get_expenses(gateway: GatewayDep, identity: IdentityDep) -> List[Expense]:
    logger.info(f"GET /expenses called for user {identity.uid}")
    try:
        return await gateway.list_expenses(identity.uid)
    except MissingUserIdError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExpenseOperationError as e:
        raise _operation_failed(e)
    except Exception as e:
        logger.exception(f"Unexpected error fetching expenses: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while loading your expenses.")


@router.post("/expenses", status_code=201, summary="Add Expense")
async def add_expense(payload: ExpenseInput, gateway: GatewayDep, identity: IdentityDep):
    logger.info(f"POST /expenses called for user {identity.uid}")
    try:
        expense = await gateway.add_expense(identity.uid, payload)
    except MissingUserIdError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExpenseOperationError as e:
        raise _operation_failed(e)
    except Exception as e:
        logger.exception(f"Unexpected error adding expense: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while adding the expense.")
    return {
        "expense": expense.model_dump(mode="json", by_alias=True),
        "message": f"{expense.name} has been successfully added.",
    }


@router.put("/expenses/{expense_id}", summary="Update Expense")
async def update_expense(expense_id: str, payload: ExpenseInput, gateway: GatewayDep, identity: IdentityDep):
    logger.info(f"PUT /expenses/{expense_id} called for user {identity.uid}")
    try:
        await gateway.update_expense(identity.uid, expense_id, payload)
    except MissingUserIdError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExpenseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ExpenseOperationError as e:
        raise _operation_failed(e)
    except Exception as e:
        logger.exception(f"Unexpected error updating expense {expense_id}: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while updating the expense.")
    return {"status": "success", "message": "The expense has been successfully updated."}


@router.delete("/expenses/{expense_id}", summary="Delete Expense")
async def delete_expense(expense_id: str, gateway: GatewayDep, identity: IdentityDep):
    logger.info(f"DELETE /expenses/{expense_id} called for user {identity.uid}")
    try:
        await gateway.delete_expense(identity.uid, expense_id)
    except MissingUserIdError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExpenseOperationError as e:
        raise _operation_failed(e)
    except Exception as e:
        logger.exception(f"Unexpected error deleting expense {expense_id}: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while removing the expense.")
    return {"status": "success", "message": "The expense has been successfully removed."}


@router.get("/dashboard", response_model=DashboardView, summary="Dashboard", description="Monthly and daily totals, one page of this month's expenses, and older months grouped.")
async def get_dashboard(
    gateway: GatewayDep,
    identity: IdentityDep,
    settings: SettingsDep,
    today_fn: TodayFnDep,
    page: int = Query(1, description="Page of the current month's expenses; clamped to the valid range."),
) -> DashboardView:
    logger.info(f"GET /dashboard called for user {identity.uid} (page {page})")
    try:
        expenses = await gateway.list_expenses(identity.uid)
    except MissingUserIdError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExpenseOperationError as e:
        raise _operation_failed(e)
    except Exception as e:
        logger.exception(f"Unexpected error building dashboard: {e}")
        raise HTTPException(status_code=500, detail="An unexpected server error occurred while loading the dashboard.")
    return build_dashboard_view(expenses, today_fn(), page, settings.page_size)


@router.get("/dashboard/stream", summary="Dashboard Stream", description="Server-Sent Events with a fresh dashboard after every change.")
async def get_dashboard_stream(
    gateway: GatewayDep,
    identity: IdentityDep,
    settings: SettingsDep,
    today_fn: TodayFnDep,
    page: int = Query(1),
):
    logger.info(f"Dashboard stream opened for user {identity.uid}")
    return StreamingResponse(
        stream_dashboard(gateway, identity.uid, page, settings.page_size, today_fn),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


# --- Sign-in redirects (handled by the OAuth proxy) ---

@auth_router.get("/login/{provider}")
async def login(provider: ProviderKind, settings: SettingsDep):
    return RedirectResponse(url=sign_in_url(provider, settings), status_code=302)


@auth_router.get("/logout")
async def logout(settings: SettingsDep):
    return RedirectResponse(url=sign_out_url(settings), status_code=302)
