"""Service layer for persisting a user's expenses in MongoDB."""
import asyncio
import logging
from contextlib import AsyncExitStack, aclosing
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from models.expense import Expense, ExpenseInput

logger = logging.getLogger(__name__)

# Newest first; records without a date fall back to insertion time
SORT_ORDER = [("date", -1), ("createdAt", -1)]

# Shown to the user when the backend call fails
FAILURE_MESSAGES = {
    "add": "There was a problem adding your expense.",
    "update": "There was a problem updating your expense.",
    "delete": "There was a problem removing your expense.",
    "fetch": "There was a problem loading your expenses.",
}

Unsubscribe = Callable[[], None]


class MissingUserIdError(ValueError):
    """Raised before any backend call when no user id was supplied."""

    def __init__(self, action: str):
        self.action = action
        super().__init__("User ID is required.")


class ExpenseOperationError(ConnectionError):
    """The backend rejected or failed an operation."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Failed to {action} expense.")

    @property
    def user_message(self) -> str:
        return FAILURE_MESSAGES.get(self.action, "There was a problem with your expense.")


class ExpenseNotFoundError(LookupError):
    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense {expense_id} not found.")


def _require_user(user_id: Optional[str], action: str) -> None:
    if not user_id:
        raise MissingUserIdError(action)


def _object_id(expense_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(expense_id)
    except (InvalidId, TypeError):
        return None


class ExpenseGateway:
    """
    Create/read/update/delete and live snapshots of one collection of expenses.

    Every document carries the owning user's id in `userId`, and every query
    is scoped by it.
    """

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def add_expense(self, user_id: str, expense: ExpenseInput) -> Expense:
        _require_user(user_id, "add")
        document: Dict[str, Any] = {
            **expense.to_document(),
            "userId": user_id,
            "createdAt": datetime.now(timezone.utc),
        }
        try:
            result = await self.collection.insert_one(document)
        except PyMongoError as e:
            logger.error(f"Error adding expense for user {user_id}: {e}")
            raise ExpenseOperationError("add") from e
        document["_id"] = result.inserted_id
        logger.info(f"Added expense {result.inserted_id} for user {user_id}.")
        return Expense.from_document(document)

    async def list_expenses(self, user_id: str) -> List[Expense]:
        _require_user(user_id, "fetch")
        try:
            return await self._fetch(user_id)
        except PyMongoError as e:
            logger.error(f"Error fetching expenses for user {user_id}: {e}")
            raise ExpenseOperationError("fetch") from e

    async def update_expense(self, user_id: str, expense_id: str, expense: ExpenseInput) -> None:
        """Overwrite the mutable fields; id, userId and createdAt are never touched."""
        _require_user(user_id, "update")
        oid = _object_id(expense_id)
        if oid is None:
            raise ExpenseNotFoundError(expense_id)
        try:
            result = await self.collection.update_one(
                {"_id": oid, "userId": user_id},
                {"$set": expense.to_document()},
            )
        except PyMongoError as e:
            logger.error(f"Error updating expense {expense_id} for user {user_id}: {e}")
            raise ExpenseOperationError("update") from e
        if result.matched_count == 0:
            raise ExpenseNotFoundError(expense_id)
        logger.info(f"Updated expense {expense_id} for user {user_id}.")

    async def delete_expense(self, user_id: str, expense_id: str) -> None:
        """Remove an expense. Unknown ids are a no-op."""
        _require_user(user_id, "delete")
        oid = _object_id(expense_id)
        if oid is None:
            logger.warning(f"Ignoring delete of malformed expense id {expense_id!r}.")
            return
        try:
            result = await self.collection.delete_one({"_id": oid, "userId": user_id})
        except PyMongoError as e:
            logger.error(f"Error deleting expense {expense_id} for user {user_id}: {e}")
            raise ExpenseOperationError("delete") from e
        if result.deleted_count == 0:
            logger.warning(f"Expense {expense_id} not found for user {user_id}; nothing deleted.")
        else:
            logger.info(f"Deleted expense {expense_id} for user {user_id}.")

    async def snapshots(self, user_id: str) -> AsyncIterator[List[Expense]]:
        """
        Yield the user's full ordered expense list, then again after every change.

        The change stream is opened before the first read so no write made
        after the initial snapshot is missed. If it cannot be opened, the
        initial snapshot is still delivered and the iteration ends there.
        """
        # Delete events carry only the document key, so any delete triggers a refetch
        pipeline = [{"$match": {"$or": [
            {"fullDocument.userId": user_id},
            {"operationType": "delete"},
        ]}}]
        async with AsyncExitStack() as stack:
            try:
                stream = await stack.enter_async_context(
                    self.collection.watch(pipeline, full_document="updateLookup")
                )
            except PyMongoError as e:
                logger.error(f"Error fetching expenses in real-time for user {user_id}: {e}")
                stream = None

            yield await self._fetch(user_id)
            if stream is None:
                return
            async for change in stream:
                logger.debug(f"Change '{change.get('operationType')}' seen for user {user_id}.")
                yield await self._fetch(user_id)

    def subscribe(self, user_id: str, on_change: Callable[[List[Expense]], None]) -> Unsubscribe:
        """
        Deliver full snapshots to `on_change` until the returned callable is invoked.

        Must be called from a running event loop. Errors end the delivery and
        are logged; the consumer keeps whatever it last received.
        """
        if not user_id:
            logger.error("User ID is required to fetch expenses.")
            return lambda: None

        active = {"value": True}

        async def deliver():
            try:
                async with aclosing(self.snapshots(user_id)) as snapshots:
                    async for expenses in snapshots:
                        if not active["value"]:
                            break
                        on_change(expenses)
            except PyMongoError as e:
                logger.error(f"Error fetching expenses in real-time for user {user_id}: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error in expense subscription for user {user_id}: {e}")

        task = asyncio.create_task(deliver(), name=f"expenses-subscription-{user_id}")

        def unsubscribe() -> None:
            active["value"] = False
            task.cancel()

        return unsubscribe

    async def _fetch(self, user_id: str) -> List[Expense]:
        expenses = []
        cursor = self.collection.find({"userId": user_id}).sort(SORT_ORDER)
        async for doc in cursor:
            try:
                expenses.append(Expense.from_document(doc))
            except ValidationError as e:
                logger.error(f"Data validation error for expense document {doc.get('_id', 'N/A')}: {e}")
                # Skip invalid documents
                continue
        return expenses
