from functools import lru_cache

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from pymongo import MongoClient, WriteConcern
from pymongo.errors import ConfigurationError


def majority_write_concern(timeout_ms=None):
    if timeout_ms is None:
        timeout_ms = settings.MONGO_WRITE_TIMEOUT_MS
    return WriteConcern("majority", wtimeout=timeout_ms)


class MongoService:
    def __init__(self, uri=None, db_name=None, write_timeout_ms=None, **client_options):
        uri = uri or settings.MONGO_URI
        db_name = db_name or settings.MONGO_DB_NAME
        if not uri or not db_name:
            raise ImproperlyConfigured("MONGO_URI and MONGO_DB_NAME must both be set")

        # one attempt per call: a failed write surfaces instead of being replayed
        client_options.setdefault("retryWrites", False)
        client_options.setdefault("retryReads", False)

        self.write_concern = majority_write_concern(write_timeout_ms)
        try:
            self.client = MongoClient(
                uri,
                w=self.write_concern.document["w"],
                wTimeoutMS=self.write_concern.document["wtimeout"],
                tz_aware=True,
                **client_options,
            )
        except ConfigurationError as exc:
            raise ImproperlyConfigured(f"Invalid MONGO_URI: {exc}") from exc
        self.db = self.client[db_name]

    def close(self):
        self.client.close()


@lru_cache(maxsize=None)
def get_mongo_service():
    return MongoService()
