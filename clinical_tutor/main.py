"""Clinical Case Tutor - composition root.

Resolves configuration once, configures logging and wires the storage
backend, oracle and tutor that the front end uses.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from clinical_tutor.config import Settings, settings
from clinical_tutor.services.local_store import FileStorage, LocalBackend
from clinical_tutor.services.oracle import FeedbackOracle
from clinical_tutor.services.remote_store import RemoteBackend
from clinical_tutor.services.storage import StorageAdapter
from clinical_tutor.services.tutor import CaseTutor

log = logging.getLogger(__name__)


@dataclass
class Services:
    storage: StorageAdapter
    oracle: FeedbackOracle
    tutor: CaseTutor


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(level=level or settings.LOG_LEVEL, format="%(levelname)s: %(message)s")


def build_storage(config: Settings = settings) -> StorageAdapter:
    """Remote store with a local fallback when configured, else local only."""
    files = FileStorage(config.LOCAL_DATA_DIR)
    if config.remote_configured:
        log.info(f"Storage: remote ({config.SUPABASE_URL}) with local fallback")
        remote = RemoteBackend(
            config.SUPABASE_URL,
            config.SUPABASE_KEY,
            timeout=config.REMOTE_TIMEOUT_SECONDS,
        )
        fallback = LocalBackend(files, namespace=config.STORAGE_NAMESPACE, seed=False)
        return StorageAdapter(remote, fallback=fallback)
    if config.SUPABASE_URL or config.SUPABASE_KEY:
        log.warning("Remote store settings incomplete or invalid, using local storage only")
    else:
        log.info(f"Storage: local only ({files.data_dir})")
    return StorageAdapter(LocalBackend(files, namespace=config.STORAGE_NAMESPACE))


def build_services(config: Settings = settings) -> Services:
    storage = build_storage(config)
    oracle = FeedbackOracle(
        api_key=config.OPENAI_API_KEY,
        model=config.OPENAI_MODEL,
        timeout=config.ORACLE_TIMEOUT_SECONDS,
    )
    if not oracle.available:
        log.warning("OPENAI_API_KEY not set: answers cannot be scored until it is configured")
    return Services(storage=storage, oracle=oracle, tutor=CaseTutor(storage, oracle))
