# The one ObjectService of this plugin process
# main.py builds it at startup; endpoints and tools look it up here.

import threading

from store.config import StoreSettings
from store.logging_config import logger, setup_logging
from store.service import ObjectService

_lock = threading.Lock()
_service: ObjectService | None = None
_settings: StoreSettings | None = None


def bootstrap(settings: StoreSettings | None = None) -> ObjectService:
    """Build and start the service. Storage is reconciled before it is published."""
    global _service, _settings
    with _lock:
        if _service is not None:
            return _service
        settings = settings or StoreSettings.from_env()
        setup_logging(settings.log_level)
        service = ObjectService.from_settings(settings)
        service.start()
        logger.info(
            "QuickShare store ready at %s (ttl=%ss, policy=%s)",
            settings.storage_root,
            settings.ttl_seconds,
            settings.consumption_policy.value,
        )
        _settings = settings
        _service = service
        return service


def get_service() -> ObjectService:
    if _service is None:
        return bootstrap()
    return _service


def get_settings() -> StoreSettings:
    if _settings is None:
        bootstrap()
    return _settings


def set_service(service: ObjectService | None, settings: StoreSettings | None = None) -> None:
    """Install (or clear) the process service. Used by tests."""
    global _service, _settings
    with _lock:
        _service = service
        _settings = settings if settings is not None else (StoreSettings() if service else None)


def shutdown() -> None:
    global _service
    with _lock:
        service, _service = _service, None
    if service is not None:
        service.stop()
