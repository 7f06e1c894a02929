"""
Shared fixtures for the mflix service tests.

The services only need a handful of collection methods, so an in-memory
stand-in for the database is used instead of a running MongoDB.  It hands
back real pymongo result objects and raises real pymongo errors, which is
what the services branch on.
"""

from __future__ import annotations

import copy
import os

import django

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "mflix_site.settings")
django.setup()

import bson
import pytest
from bson import ObjectId
from bson.codec_options import CodecOptions
from pymongo.errors import DuplicateKeyError
from pymongo.results import DeleteResult, InsertOneResult, UpdateResult

from mflix.services.comment_service import CommentService
from mflix.services.user_service import UserService


# ─────────────────────────────────────────────────────────────────────────────
# In-memory database
# ─────────────────────────────────────────────────────────────────────────────

CODEC_OPTIONS = CodecOptions(tz_aware=True)


def _roundtrip(doc: dict) -> dict:
    return bson.decode(bson.encode(doc), codec_options=CODEC_OPTIONS)


def _matches(doc: dict, query: dict | None) -> bool:
    for key, expected in (query or {}).items():
        if isinstance(expected, dict) and "$in" in expected:
            if doc.get(key) not in expected["$in"]:
                return False
        elif key not in doc or doc[key] != expected:
            return False
    return True


class FakeCollection:
    """Just enough of pymongo.collection.Collection for the services.

    Documents go through the BSON codec on the way in and out, with the
    same tz_aware decoding the real client uses.  `with_options` hands back
    a copy sharing the data, and every call is logged with the options of
    the handle it was made on.
    """

    def __init__(self, name: str):
        self.name = name
        self.docs: list[dict] = []
        self.unique: set[str] = {"_id"}
        self.indexes: list[tuple] = []
        self.calls: list[tuple] = []
        self.options: dict = {}

    def with_options(self, **kwargs):
        clone = copy.copy(self)
        clone.options = {**self.options, **kwargs}
        return clone

    def _log(self, method):
        self.calls.append((method, dict(self.options)))

    def create_index(self, keys, unique=False, **kwargs):
        self.indexes.append((keys, unique))
        if unique:
            self.unique.add(keys[0][0])
        return "_".join(f"{field}_{direction}" for field, direction in keys)

    def _find(self, query):
        return [doc for doc in self.docs if _matches(doc, query)]

    def insert_one(self, document, session=None):
        self._log("insert_one")
        document.setdefault("_id", ObjectId())
        doc = _roundtrip(document)
        for field in self.unique:
            if field in doc and any(other.get(field) == doc[field] for other in self.docs):
                raise DuplicateKeyError(
                    f"E11000 duplicate key error collection: {self.name} index: {field}_1",
                    11000,
                )
        self.docs.append(doc)
        return InsertOneResult(doc["_id"], True)

    def find_one(self, query=None, session=None):
        found = self._find(query)
        return _roundtrip(found[0]) if found else None

    def count_documents(self, query, limit=0, session=None):
        count = len(self._find(query))
        return min(count, limit) if limit else count

    def distinct(self, key, query=None, session=None):
        values = []
        for doc in self._find(query):
            if key in doc and doc[key] not in values:
                values.append(doc[key])
        return values

    def update_one(self, query, update, upsert=False, session=None):
        self._log("update_one")
        found = self._find(query)
        changes = _roundtrip(update["$set"])
        if found:
            doc = found[0]
            modified = any(doc.get(k) != v for k, v in changes.items())
            doc.update(changes)
            return UpdateResult({"n": 1, "nModified": int(modified)}, True)
        if upsert:
            new_doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            new_doc.update(changes)
            new_doc["_id"] = ObjectId()
            self.docs.append(_roundtrip(new_doc))
            return UpdateResult({"n": 1, "nModified": 0, "upserted": new_doc["_id"]}, True)
        return UpdateResult({"n": 0, "nModified": 0}, True)

    def delete_one(self, query, session=None):
        self._log("delete_one")
        found = self._find(query)
        if found:
            self.docs.remove(found[0])
        return DeleteResult({"n": len(found[:1])}, True)

    def delete_many(self, query, session=None):
        self._log("delete_many")
        found = self._find(query)
        # in place: handles returned by with_options share this list
        self.docs[:] = [doc for doc in self.docs if doc not in found]
        return DeleteResult({"n": len(found)}, True)

    def aggregate(self, pipeline, session=None):
        self._log("aggregate")
        rows = [_roundtrip(doc) for doc in self.docs]
        for stage in pipeline:
            (op, args), = stage.items()
            if op == "$group":
                field = args["_id"].lstrip("$")
                acc_name, acc = next((k, v) for k, v in args.items() if k != "_id")
                groups: dict = {}
                for row in rows:
                    groups[row.get(field)] = groups.get(row.get(field), 0) + acc["$sum"]
                rows = [{"_id": key, acc_name: total} for key, total in groups.items()]
            elif op == "$sort":
                for key, direction in reversed(list(args.items())):
                    rows.sort(key=lambda r: r[key], reverse=direction < 0)
            elif op == "$limit":
                rows = rows[:args]
            else:
                raise NotImplementedError(op)
        return iter(rows)


class FakeDatabase:
    def __init__(self, client=None):
        self.client = client
        self._collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def db() -> FakeDatabase:
    database = FakeDatabase()
    # the production database carries a unique index on users.email
    database["users"].create_index([("email", 1)], unique=True)
    return database


@pytest.fixture
def user_service(db) -> UserService:
    return UserService(db, use_transactions=False)


@pytest.fixture
def comment_service(db) -> CommentService:
    return CommentService(db)
