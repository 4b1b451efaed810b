"""Live dashboard updates driven by the expense subscription."""
import asyncio
import datetime as dt
import logging
from typing import AsyncIterator, Callable, List, Optional

from models.expense import Expense
from services.aggregation import build_dashboard_view
from services.expenses_service import ExpenseGateway, Unsubscribe

logger = logging.getLogger(__name__)


class DashboardFeed:
    """
    Holds the single live subscription behind one dashboard view.

    Watching another user cancels the previous subscription first, so one
    user's snapshots are never delivered under another user's session.
    """

    def __init__(self, gateway: ExpenseGateway):
        self.gateway = gateway
        self.user_id: Optional[str] = None
        self.latest: List[Expense] = []
        self._unsubscribe: Optional[Unsubscribe] = None

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def watch(self, user_id: str, on_change: Optional[Callable[[List[Expense]], None]] = None) -> None:
        self.close()
        self.user_id = user_id
        self.latest = []

        def handle(expenses: List[Expense]) -> None:
            self.latest = expenses
            if on_change is not None:
                on_change(expenses)

        logger.debug(f"Dashboard feed watching user {user_id}.")
        self._unsubscribe = self.gateway.subscribe(user_id, handle)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.debug(f"Dashboard feed for user {self.user_id} closed.")


async def stream_dashboard(
    gateway: ExpenseGateway,
    user_id: str,
    page: int = 1,
    page_size: int = 5,
    today_fn: Callable[[], dt.date] = dt.date.today,
) -> AsyncIterator[str]:
    """Server-Sent Events, one `dashboard` event per snapshot. Closing it cancels the subscription."""
    queue: asyncio.Queue = asyncio.Queue()
    feed = DashboardFeed(gateway)
    feed.watch(user_id, queue.put_nowait)
    try:
        while True:
            expenses = await queue.get()
            view = build_dashboard_view(expenses, today_fn(), page, page_size)
            yield f"event: dashboard\ndata: {view.model_dump_json(by_alias=True)}\n\n"
    finally:
        feed.close()
