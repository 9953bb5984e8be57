"""
MongoDB repository for alerts and daily summaries.

Every pymongo error is wrapped in StoreFailure; AlertStore decides what
to do about it (fall back to the local journal).
"""

from typing import Protocol

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from .constants import MONGO_TIMEOUT_MS
from .exceptions import StoreFailure
from .logger import logger


class DocumentStore(Protocol):
    """Remote persistence contract used by AlertStore"""

    def insert_alert(self, doc: dict) -> None: ...

    def recent_alerts(self, limit: int) -> list[dict]: ...

    def alerts_by_day(self, day: str) -> list[dict]: ...

    def alerts_by_scan(self, scan_name: str, day: str | None = None) -> list[dict]: ...

    def find_alert(self, alert_id: str) -> dict | None: ...

    def upsert_summary(self, doc: dict) -> None: ...

    def summaries_between(self, start: str, end: str) -> list[dict]: ...

    def ping(self) -> bool: ...


class MongoDocumentStore:
    """
    Repository over two collections: `alerts` (append-only) and
    `summaries` (one document per trading day).
    """

    def __init__(self, uri: str, database: str = "stock_alerts",
                 timeout_ms: int = MONGO_TIMEOUT_MS):
        self.uri = uri
        self.database_name = database
        self.timeout_ms = timeout_ms
        self._client: MongoClient | None = None

    # ==================== Connection ====================

    def connect(self):
        """Create the client and indexes; raises StoreFailure if unreachable"""
        try:
            self._client = MongoClient(
                self.uri,
                serverSelectionTimeoutMS=self.timeout_ms,
                connectTimeoutMS=self.timeout_ms,
                socketTimeoutMS=self.timeout_ms,
            )
            db = self._client[self.database_name]
            db.alerts.create_index([("id", ASCENDING)], unique=True)
            db.alerts.create_index([("trading_day", ASCENDING)])
            db.alerts.create_index([("scan_name", ASCENDING)])
            db.summaries.create_index([("date", ASCENDING)], unique=True)
        except PyMongoError as e:
            logger.error("mongo.connect_failed", error=str(e)[:200])
            # the next call reconnects and builds the indexes
            if self._client is not None:
                self._client.close()
                self._client = None
            raise StoreFailure("Could not connect to document store", original_error=e)
        logger.info("mongo.connected", database=self.database_name)

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("mongo.closed")

    def _db(self):
        if self._client is None:
            self.connect()
        return self._client[self.database_name]

    def _run(self, operation: str, fn):
        try:
            return fn(self._db())
        except StoreFailure:
            raise
        except PyMongoError as e:
            logger.warning("mongo.operation_failed", operation=operation, error=str(e)[:200])
            raise StoreFailure(f"Document store {operation} failed", original_error=e)

    # ==================== Alerts ====================

    def insert_alert(self, doc: dict) -> None:
        # insert_one mutates its argument with _id
        self._run("insert_alert", lambda db: db.alerts.insert_one(dict(doc)))

    def recent_alerts(self, limit: int) -> list[dict]:
        docs = self._run("recent_alerts", lambda db: list(
            db.alerts.find({}, {"_id": 0}).sort("_id", DESCENDING).limit(limit)
        ))
        docs.reverse()
        return docs

    def alerts_by_day(self, day: str) -> list[dict]:
        return self._run("alerts_by_day", lambda db: list(
            db.alerts.find({"trading_day": day}, {"_id": 0}).sort("_id", ASCENDING)
        ))

    def alerts_by_scan(self, scan_name: str, day: str | None = None) -> list[dict]:
        query = {"scan_name": scan_name}
        if day:
            query["trading_day"] = day
        return self._run("alerts_by_scan", lambda db: list(
            db.alerts.find(query, {"_id": 0}).sort("_id", ASCENDING)
        ))

    def find_alert(self, alert_id: str) -> dict | None:
        return self._run("find_alert", lambda db: db.alerts.find_one({"id": alert_id}, {"_id": 0}))

    # ==================== Summaries ====================

    def upsert_summary(self, doc: dict) -> None:
        self._run("upsert_summary", lambda db: db.summaries.replace_one(
            {"date": doc["date"]}, dict(doc), upsert=True
        ))

    def summaries_between(self, start: str, end: str) -> list[dict]:
        return self._run("summaries_between", lambda db: list(
            db.summaries.find({"date": {"$gte": start, "$lte": end}}, {"_id": 0})
            .sort("date", ASCENDING)
        ))

    def ping(self) -> bool:
        try:
            self._db().command("ping")
            return True
        except (PyMongoError, StoreFailure) as e:
            logger.warning("mongo.ping_failed", error=str(e)[:200])
            return False
