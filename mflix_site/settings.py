import os

SECRET_KEY = os.environ.get("MFLIX_SECRET_KEY", "mflix-dev-secret")
DEBUG = os.environ.get("MFLIX_DEBUG", "0") == "1"

INSTALLED_APPS = [
    "mflix",
]

USE_TZ = True
TIME_ZONE = "UTC"

# MongoDB (replica set recommended: majority writes and transactions need one)
MONGO_URI = os.environ.get("MFLIX_MONGO_URI", "mongodb://localhost:27017/")
MONGO_DB_NAME = os.environ.get("MFLIX_DB_NAME", "sample_mflix")
MONGO_WRITE_TIMEOUT_MS = int(os.environ.get("MFLIX_WRITE_TIMEOUT_MS", "2500"))
MONGO_USE_TRANSACTIONS = os.environ.get("MFLIX_USE_TRANSACTIONS", "0") == "1"

MFLIX_TOP_CRITICS = 20

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "loggers": {
        "mflix": {
            "handlers": ["console"],
            "level": os.environ.get("MFLIX_LOG_LEVEL", "INFO").upper(),
        },
    },
}
