"""Key/value storage slots and the load/save cycle for the state blob."""

import json
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from mcp_forge import config
from mcp_forge.dates import local_now
from mcp_forge.models import CURRENT_STATE_VERSION, StorageSlot, StoredState, utcnow
from mcp_forge.normalize import build_default_state, migrate_legacy_logs, sanitize_state

logger = logging.getLogger(__name__)


class SlotStore:
    """Named text slots in a single SQLite table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, url: str = config.DATABASE_URL) -> "SlotStore":
        engine = create_engine(url, echo=False)
        SQLModel.metadata.create_all(engine)
        return cls(engine)

    def get(self, key: str) -> Optional[str]:
        with Session(self.engine) as session:
            slot = session.get(StorageSlot, key)
            return slot.value if slot else None

    def set(self, key: str, value: str) -> None:
        with Session(self.engine) as session:
            slot = session.get(StorageSlot, key)
            if slot:
                slot.value = value
                slot.updated_at = utcnow()
            else:
                slot = StorageSlot(key=key, value=value)
            session.add(slot)
            session.commit()

    def remove(self, key: str) -> None:
        with Session(self.engine) as session:
            slot = session.get(StorageSlot, key)
            if slot:
                session.delete(slot)
                session.commit()


def dump_state(state: StoredState) -> str:
    return json.dumps(state.model_dump(mode="json"))


def save_state(store: SlotStore, state: StoredState) -> bool:
    """Persist the whole state. Failures are logged, never raised."""
    try:
        store.set(config.STORAGE_KEY, dump_state(state))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Could not persist state: %s", e)
        return False
    return True


def _read_slot(store: SlotStore, key: str) -> Optional[str]:
    try:
        return store.get(key)
    except SQLAlchemyError as e:
        logger.warning("Could not read slot %s: %s", key, e)
        return None


def _parse_primary(raw: str, now: datetime) -> Optional[StoredState]:
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Stored state is not valid JSON, ignoring it")
        return None
    if not isinstance(parsed, dict):
        logger.warning("Stored state is not an object, ignoring it")
        return None
    version = parsed.get("version", CURRENT_STATE_VERSION)
    if not isinstance(version, int) or isinstance(version, bool) or version > CURRENT_STATE_VERSION:
        logger.warning("Unsupported state version %r, ignoring stored state", version)
        return None
    return sanitize_state(parsed, now)


def _parse_legacy(raw: str, now: datetime) -> Optional[StoredState]:
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Legacy log slot is not valid JSON, ignoring it")
        return None
    return migrate_legacy_logs(parsed if isinstance(parsed, list) else [], now)


def load_state(store: SlotStore, now: Optional[datetime] = None) -> StoredState:
    """Load the stored state, migrating or seeding it when needed.

    Order of preference:
    1. the primary slot, sanitized;
    2. the legacy flat log slot, migrated, saved, then deleted;
    3. the default seeded state, saved.
    """
    now = now or local_now()

    raw = _read_slot(store, config.STORAGE_KEY)
    if raw:
        state = _parse_primary(raw, now)
        if state is not None:
            return state

    legacy_raw = _read_slot(store, config.LEGACY_LOG_KEY)
    if legacy_raw:
        state = _parse_legacy(legacy_raw, now)
        if state is not None:
            logger.info("Migrated %d legacy log days", len(state.history))
            save_state(store, state)
            try:
                store.remove(config.LEGACY_LOG_KEY)
            except SQLAlchemyError as e:
                logger.warning("Could not remove legacy log slot: %s", e)
            return state

    logger.info("No usable stored state, starting from the default state")
    state = build_default_state(now)
    save_state(store, state)
    return state
