import enum
import logging

from bson import ObjectId
from django.conf import settings
from django.utils import timezone
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo.read_concern import ReadConcern

from mflix.errors import ConflictError, OperationFailed, ValidationError
from mflix.models import Comment, Critic, bson_datetime
from mflix.services.mongo_service import get_mongo_service

logger = logging.getLogger(__name__)

COMMENTS_COLLECTION = "comments"


class MutationResult(enum.Enum):
    """Outcome of an owner-scoped update or delete. Only APPLIED is truthy."""

    APPLIED = "applied"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"

    def __bool__(self):
        return self is MutationResult.APPLIED


def _object_id(comment_id):
    if comment_id is None or not ObjectId.is_valid(comment_id):
        return None
    return ObjectId(comment_id)


class CommentService:
    def __init__(self, db):
        self.db = db
        self.comments = db[COMMENTS_COLLECTION]

    @classmethod
    def from_settings(cls):
        return cls(get_mongo_service().db)

    def ensure_indexes(self):
        self.comments.create_index([("email", ASCENDING)])

    def get_comment(self, comment_id):
        oid = _object_id(comment_id)
        if oid is None:
            return None
        try:
            doc = self.comments.find_one({"_id": oid})
        except PyMongoError as exc:
            raise OperationFailed("get_comment", comment_id, str(exc)) from exc
        return Comment.from_document(doc) if doc else None

    def add_comment(self, comment):
        """Insert a new comment. The comment must already carry its id.

        Equivalent to `db.comments.insertOne(comment)` in the mongo shell.
        The date is rounded to what BSON stores (UTC, milliseconds).
        """
        if not comment.id:
            raise ValidationError("Comment objects need to have an id set")
        if not ObjectId.is_valid(comment.id):
            raise ValidationError(f"`{comment.id}` is not a valid comment id")
        comment.date = bson_datetime(comment.date)
        try:
            self.comments.insert_one(comment.to_document())
        except DuplicateKeyError as exc:
            raise ConflictError(f"Comment `{comment.id}` already exists") from exc
        except PyMongoError as exc:
            logger.error("Could not insert comment `%s`: %s", comment.id, exc)
            raise OperationFailed("add_comment", comment.id, str(exc)) from exc
        return comment

    def update_comment(self, comment_id, text, email):
        """Set a new text and date on a comment owned by `email`.

        Same as `db.comments.updateOne({_id, email}, {$set: {text, date}})`.
        """
        oid = _object_id(comment_id)
        if oid is None:
            return MutationResult.NOT_FOUND
        try:
            result = self.comments.update_one(
                {"_id": oid, "email": email},
                {"$set": {"text": text, "date": bson_datetime(timezone.now())}},
            )
        except PyMongoError as exc:
            logger.error("Could not update comment `%s`: %s", comment_id, exc)
            raise OperationFailed("update_comment", comment_id, str(exc)) from exc

        if result.matched_count > 0:
            if result.modified_count != 1:
                logger.warning("Comment `%s` text was not updated. Is it the same text?", comment_id)
            return MutationResult.APPLIED

        logger.error("Could not update comment `%s`. Make sure it is owned by `%s`", comment_id, email)
        return self._classify_miss("update_comment", comment_id, oid)

    def delete_comment(self, comment_id, email):
        if not comment_id:
            raise ValidationError("comment_id is required")
        oid = _object_id(comment_id)
        if oid is None:
            return MutationResult.NOT_FOUND
        try:
            result = self.comments.delete_one({"_id": oid, "email": email})
        except PyMongoError as exc:
            logger.error("Could not delete comment `%s`: %s", comment_id, exc)
            raise OperationFailed("delete_comment", comment_id, str(exc)) from exc

        # anything but one deleted document: missing, or not owned by `email`
        if result.deleted_count != 1:
            logger.warning(
                "Not able to delete comment `%s` for user `%s`. "
                "User does not own comment or already deleted!",
                comment_id,
                email,
            )
            return self._classify_miss("delete_comment", comment_id, oid)
        return MutationResult.APPLIED

    def _classify_miss(self, operation, comment_id, oid):
        try:
            exists = self.comments.count_documents({"_id": oid}, limit=1)
        except PyMongoError as exc:
            raise OperationFailed(operation, comment_id, str(exc)) from exc
        if exists:
            return MutationResult.FORBIDDEN
        return MutationResult.NOT_FOUND

    def most_active_commenters(self, limit=None):
        """Users with the most comments, most active first.

        Read with a majority read concern so the report only counts
        comments a majority of the replica set has acknowledged.
        """
        if limit is None:
            limit = settings.MFLIX_TOP_CRITICS
        pipeline = [
            {"$group": {"_id": "$email", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}},
            {"$limit": limit},
        ]
        comments = self.comments.with_options(read_concern=ReadConcern("majority"))
        try:
            return [Critic.from_document(doc) for doc in comments.aggregate(pipeline)]
        except PyMongoError as exc:
            raise OperationFailed("most_active_commenters", COMMENTS_COLLECTION, str(exc)) from exc
