"""Store-wide key/value settings with a process-local read-through cache."""
import threading
import time
from typing import Dict, Mapping, Optional

import structlog
from fastapi import Depends
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.db.session import get_db
from storefront.models.store_setting import StoreSetting

logger = structlog.get_logger()

DEFAULT_SETTINGS: Dict[str, str] = {
    "storeName": "VisionCraft",
    "storeEmail": "admin@visioncraft.com",
    "currency": "USD",
    "timezone": "UTC",
    "language": "en",
    "emailNotifications": "true",
    "lowStockAlerts": "true",
}


class SettingsCache:
    def __init__(self, ttl_seconds: int = 0):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._values: Optional[Dict[str, str]] = None
        self._loaded_at = 0.0
        self._generation = 0

    @property
    def generation(self) -> int:
        """Bumped by every invalidate; a load started before it is stale."""
        with self._lock:
            return self._generation

    def get(self) -> Optional[Dict[str, str]]:
        with self._lock:
            if self._values is None:
                return None
            if self.ttl_seconds and time.monotonic() - self._loaded_at > self.ttl_seconds:
                self._values = None
                return None
            return dict(self._values)

    def put(self, values: Dict[str, str], generation: Optional[int] = None) -> bool:
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._values = dict(values)
            self._loaded_at = time.monotonic()
            return True

    def invalidate(self) -> None:
        with self._lock:
            self._generation += 1
            self._values = None


settings_cache = SettingsCache(ttl_seconds=settings.SETTINGS_CACHE_TTL_SECONDS)


class SettingsService:
    def __init__(self, db: Session, cache: SettingsCache = settings_cache):
        self.db = db
        self.cache = cache

    def get_all(self) -> Dict[str, str]:
        cached = self.cache.get()
        if cached is not None:
            return cached

        generation = self.cache.generation
        values = dict(DEFAULT_SETTINGS)
        for row in self.db.query(StoreSetting).all():
            values[row.key] = row.value
        if not self.cache.put(values, generation):
            logger.debug("settings_cache_put_skipped", generation=generation)
        return dict(values)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.get_all().get(key, default)

    def set_many(self, values: Mapping[str, object]) -> Dict[str, str]:
        """Upsert every key. Concurrent writers: the last commit wins."""
        try:
            for key, value in values.items():
                if value is None:
                    text = ""
                elif isinstance(value, bool):
                    text = str(value).lower()
                else:
                    text = str(value)
                row = self.db.query(StoreSetting).filter(StoreSetting.key == key).first()
                if row:
                    row.value = text
                else:
                    self.db.add(StoreSetting(key=key, value=text))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        finally:
            self.cache.invalidate()

        logger.info("store_settings_updated", keys=sorted(values.keys()))
        return self.get_all()

    @property
    def currency(self) -> str:
        return (self.get("currency") or DEFAULT_SETTINGS["currency"]).upper()


def get_settings_service(db: Session = Depends(get_db)) -> SettingsService:
    return SettingsService(db)
