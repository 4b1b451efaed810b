"""Shared fixtures: an in-memory stand-in for the MongoDB expenses collection."""
import asyncio
import copy
import datetime as dt
import os
from types import SimpleNamespace

# Must be set before config is imported by the modules under test
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")

import pytest
from bson import ObjectId

from models.expense import Expense, ExpenseInput
from services.expenses_service import ExpenseGateway


def _sort_key(value):
    # MongoDB orders missing values before everything else
    return (value is not None, value if value is not None else 0)


def _matches(doc, query):
    return all(doc.get(key) == value for key, value in query.items())


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, keys):
        for key, direction in reversed(keys):
            self._docs.sort(key=lambda d: _sort_key(d.get(key)), reverse=direction == -1)
        return self

    def __aiter__(self):
        self._iter = iter(self._docs)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeChangeStream:
    def __init__(self, collection):
        self.collection = collection
        self.queue = asyncio.Queue()

    async def __aenter__(self):
        if self.collection.watch_error is not None:
            raise self.collection.watch_error
        self.collection.streams.append(self)
        return self

    async def __aexit__(self, *exc_info):
        if self in self.collection.streams:
            self.collection.streams.remove(self)

    def __aiter__(self):
        return self

    async def __anext__(self):
        change = await self.queue.get()
        # Queued exceptions surface the way a dropped cursor would
        if isinstance(change, Exception):
            raise change
        return change


class FakeCollection:
    """The subset of AsyncIOMotorCollection the gateway uses."""

    def __init__(self):
        self.docs = []
        self.streams = []
        self.calls = []
        self.fail_with = None
        self.watch_error = None

    def _record(self, name):
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    def _emit(self, change):
        for stream in list(self.streams):
            stream.queue.put_nowait(change)

    async def insert_one(self, document):
        self._record("insert_one")
        document.setdefault("_id", ObjectId())
        stored = copy.deepcopy(document)
        self.docs.append(stored)
        self._emit({"operationType": "insert", "fullDocument": copy.deepcopy(stored)})
        return SimpleNamespace(inserted_id=document["_id"])

    def find(self, query):
        self._record("find")
        return FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, query)])

    async def update_one(self, query, update):
        self._record("update_one")
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update.get("$set", {}))
                self._emit({"operationType": "update", "fullDocument": copy.deepcopy(doc)})
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query):
        self._record("delete_one")
        for doc in self.docs:
            if _matches(doc, query):
                self.docs.remove(doc)
                self._emit({"operationType": "delete", "documentKey": {"_id": doc["_id"]}})
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def watch(self, pipeline=None, full_document=None):
        self._record("watch")
        return FakeChangeStream(self)


TODAY = dt.date(2024, 5, 15)


def make_expense(name="Lunch", amount=100.0, category="food", payment_method="cash", date=TODAY, **extra):
    return Expense(
        id=extra.pop("id", str(ObjectId())),
        name=name,
        amount=amount,
        category=category,
        payment_method=payment_method,
        date=date,
        **extra,
    )


def make_input(name="Lunch", amount=100.0, category="food", payment_method="cash", date=None):
    return ExpenseInput(
        name=name,
        amount=amount,
        category=category,
        payment_method=payment_method,
        date=date or dt.date.today(),
    )


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def gateway(collection):
    return ExpenseGateway(collection)
