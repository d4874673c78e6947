"""
MongoEngine connection lifecycle for the app's default alias.
"""

from mongoengine import connect, disconnect
import logging

logger = logging.getLogger(__name__)

DB_ALIAS = "default"


def connect_db(mongo_uri: str, **kwargs):
    """Open the default connection; the database name comes from the URI path.

    Extra keyword arguments go straight to `mongoengine.connect`.
    """
    try:
        connect(host=mongo_uri, alias=DB_ALIAS, **kwargs)
    except Exception as e:
        logger.error(f"MongoDB connection failed: {e}")
        raise
    logger.info("MongoDB connection ready")


def disconnect_db():
    try:
        disconnect(alias=DB_ALIAS)
    except Exception as e:
        logger.error(f"MongoDB disconnect failed: {e}")
        return
    logger.info("MongoDB connection closed")
