import logging
from typing import NamedTuple

from bson import ObjectId
from django.conf import settings
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from mflix.errors import ConflictError, OperationFailed, ValidationError
from mflix.models import Session, User
from mflix.services.mongo_service import get_mongo_service, majority_write_concern

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"
SESSIONS_COLLECTION = "sessions"


class PreferencesUpdate(NamedTuple):
    matched_count: int
    modified_count: int

    def __bool__(self):
        # Success means the write went through; check matched_count for "no such user".
        return True


class UserService:
    def __init__(self, db, use_transactions=None):
        self.db = db
        self.users = db[USERS_COLLECTION]
        self.sessions = db[SESSIONS_COLLECTION]
        if use_transactions is None:
            use_transactions = settings.MONGO_USE_TRANSACTIONS
        self.use_transactions = use_transactions

    @classmethod
    def from_settings(cls):
        return cls(get_mongo_service().db)

    def ensure_indexes(self):
        self.users.create_index([("email", ASCENDING)], unique=True)
        self.sessions.create_index([("user_id", ASCENDING)])

    def add_user(self, user):
        """Insert `user` into `users`, waiting for a majority of the replica set.

        Raises ConflictError if a user with the same email already exists.
        """
        if user.id and not ObjectId.is_valid(user.id):
            raise ValidationError(f"`{user.id}` is not a valid user id")
        try:
            self.users.with_options(write_concern=majority_write_concern()).insert_one(
                user.to_document()
            )
        except DuplicateKeyError as exc:
            logger.error("Could not insert `%s` into `users`: %s", user.email, exc)
            raise ConflictError(f"User with email `{user.email}` already exists") from exc
        except PyMongoError as exc:
            logger.error("Could not insert `%s` into `users`: %s", user.email, exc)
            raise OperationFailed("add_user", user.email, str(exc)) from exc
        return True

    def create_user_session(self, user_id, jwt):
        """Store `jwt` as the only session of `user_id`, replacing any previous token."""
        try:
            self.sessions.update_one({"user_id": user_id}, {"$set": {"jwt": jwt}}, upsert=True)
        except PyMongoError as exc:
            logger.error("Unable to $set jwt for `%s` in sessions: %s", user_id, exc)
            raise OperationFailed("create_user_session", user_id, str(exc)) from exc
        return True

    def get_user(self, email):
        try:
            doc = self.users.find_one({"email": email})
        except PyMongoError as exc:
            raise OperationFailed("get_user", email, str(exc)) from exc
        return User.from_document(doc) if doc else None

    def get_user_session(self, user_id):
        try:
            doc = self.sessions.find_one({"user_id": user_id})
        except PyMongoError as exc:
            raise OperationFailed("get_user_session", user_id, str(exc)) from exc
        return Session.from_document(doc) if doc else None

    def delete_user_sessions(self, user_id, session=None):
        """Remove every session of `user_id`. Returns whether the delete was acknowledged."""
        try:
            result = self.sessions.delete_many({"user_id": user_id}, session=session)
        except PyMongoError as exc:
            logger.error("Could not delete sessions of `%s`: %s", user_id, exc)
            raise OperationFailed("delete_user_sessions", user_id, str(exc)) from exc
        return result.acknowledged

    def delete_user(self, email):
        """Delete the sessions of `email` and then the user itself.

        Without transactions the two deletes are independent: if the second
        one fails the sessions are already gone. Calling again is safe.
        """
        try:
            if self.use_transactions:
                # single attempt: leaving the block commits, an error aborts
                with self.db.client.start_session() as session:
                    with session.start_transaction(write_concern=majority_write_concern()):
                        return self._delete_user(email, session)
            return self._delete_user(email)
        except OperationFailed:
            raise
        except PyMongoError as exc:
            logger.error("Issue caught while trying to delete user `%s`: %s", email, exc)
            raise OperationFailed("delete_user", email, str(exc)) from exc

    def _delete_user(self, email, session=None):
        if not self.delete_user_sessions(email, session=session):
            return False
        result = self.users.delete_one({"email": email}, session=session)
        if result.deleted_count < 1:
            logger.warning("User `%s` not found. Concurrent delete?", email)
        return result.acknowledged

    def update_user_preferences(self, email, preferences):
        """Replace the whole `preferences` field of the user `email`."""
        if preferences is None:
            raise ValidationError("preferences cannot be set to None")
        try:
            result = self.users.update_one(
                {"email": email}, {"$set": {"preferences": preferences}}
            )
        except PyMongoError as exc:
            logger.error("Issue caught while trying to update user `%s`: %s", email, exc)
            raise OperationFailed("update_user_preferences", email, str(exc)) from exc

        if result.modified_count < 1:
            logger.warning(
                "User `%s` was not updated (matched %d). Same `preferences` re-written? %s",
                email,
                result.matched_count,
                preferences,
            )
        return PreferencesUpdate(result.matched_count, result.modified_count)

    def purge_orphan_sessions(self):
        """Delete sessions whose user no longer exists. Returns how many were removed."""
        try:
            user_ids = self.sessions.distinct("user_id")
            if not user_ids:
                return 0
            known = set(self.users.distinct("email", {"email": {"$in": user_ids}}))
        except PyMongoError as exc:
            raise OperationFailed("purge_orphan_sessions", "sessions", str(exc)) from exc
        orphans = [user_id for user_id in user_ids if user_id not in known]
        if not orphans:
            return 0
        try:
            result = self.sessions.delete_many({"user_id": {"$in": orphans}})
        except PyMongoError as exc:
            raise OperationFailed("purge_orphan_sessions", ",".join(orphans), str(exc)) from exc
        logger.info("Purged %d orphan sessions", result.deleted_count)
        return result.deleted_count
