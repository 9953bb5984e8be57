"""
Durable local JSON files: atomic writes, the store's fallback journal,
and cleanup of dated archives.
"""
import json
import os
import threading
from datetime import datetime
from pathlib import Path

from .constants import JOURNAL_MAX_ALERTS, JOURNAL_MAX_SUMMARIES
from .logger import logger


def atomic_write_json(path: Path, data) -> None:
    """Write JSON via temp file + rename so readers never see a partial file"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_suffix(path.suffix + '.tmp')
    with open(temp_file, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)
    os.replace(temp_file, path)


def load_json(path: Path, default):
    """Read a JSON file; missing or corrupted files yield `default`"""
    path = Path(path)
    if not path.exists():
        return default
    try:
        with open(path, encoding='utf-8') as f:
            content = f.read()
        if not content.strip():
            return default
        return json.loads(content)
    except Exception as e:
        logger.error("backup.load_failed", file=str(path), error=str(e))
        return default


def cleanup_old_backups(directory: Path, pattern: str = "*.json", days: int = 30) -> int:
    """
    Remove files matching `pattern` older than specified days

    Args:
        directory: Directory to scan
        pattern: Glob of files eligible for deletion
        days: Keep files newer than this many days

    Returns:
        Number of files deleted
    """
    deleted = 0
    cutoff_time = datetime.now().timestamp() - (days * 86400)

    try:
        for filepath in Path(directory).glob(pattern):
            if filepath.stat().st_mtime < cutoff_time:
                filepath.unlink()
                deleted += 1
                logger.info("backup.deleted", file=str(filepath))

        if deleted > 0:
            logger.info("backup.cleanup", deleted=deleted, days=days)

    except Exception as e:
        logger.error("backup.cleanup_failed", error=str(e))

    return deleted


class LocalJournal:
    """
    Capped local journal of alerts and summaries, used when the remote
    store is unreachable (or not configured).

    File layout: {"alerts": [...], "summaries": [...]}. Alerts keep the
    newest `max_alerts`, summaries the newest `max_summaries`; a summary
    for a date already present replaces it.
    """

    def __init__(self, path: str | Path, max_alerts: int = JOURNAL_MAX_ALERTS,
                 max_summaries: int = JOURNAL_MAX_SUMMARIES):
        self.path = Path(path)
        self.max_alerts = max_alerts
        self.max_summaries = max_summaries
        self._lock = threading.Lock()
        self._data = self._load()

    def _load(self) -> dict:
        data = load_json(self.path, {})
        if not isinstance(data, dict):
            logger.error("journal.bad_format", file=str(self.path))
            data = {}
        return {
            "alerts": list(data.get("alerts") or []),
            "summaries": list(data.get("summaries") or []),
        }

    def _save(self):
        atomic_write_json(self.path, self._data)

    def append_alert(self, doc: dict) -> dict:
        with self._lock:
            self._data["alerts"].append(doc)
            if len(self._data["alerts"]) > self.max_alerts:
                self._data["alerts"] = self._data["alerts"][-self.max_alerts:]
            self._save()
        logger.info("journal.alert_saved", symbol=doc.get("symbol"), id=doc.get("id"))
        return doc

    def upsert_summary(self, doc: dict) -> dict:
        with self._lock:
            summaries = [s for s in self._data["summaries"] if s.get("date") != doc.get("date")]
            summaries.append(doc)
            self._data["summaries"] = summaries[-self.max_summaries:]
            self._save()
        logger.info("journal.summary_saved", date=doc.get("date"))
        return doc

    def alerts(self) -> list[dict]:
        with self._lock:
            return list(self._data["alerts"])

    def summaries(self) -> list[dict]:
        with self._lock:
            return list(self._data["summaries"])

    def find_alert(self, alert_id: str) -> dict | None:
        with self._lock:
            for doc in self._data["alerts"]:
                if doc.get("id") == alert_id:
                    return doc
        return None

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "file": str(self.path),
                "alerts": len(self._data["alerts"]),
                "summaries": len(self._data["summaries"]),
                "max_alerts": self.max_alerts,
                "max_summaries": self.max_summaries,
            }
