"""Versioned slot persistence for the entity store."""

import logging
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy.engine import Engine
from sqlmodel import Session

from planai.config import settings
from planai.models.common import StoreSlot
from planai.store.entities import StoreState

logger = logging.getLogger(__name__)


class SlotPersistence:
    """Keep the whole store as one JSON document in the ``store_slots`` table.

    A slot written under a different version is ignored on load and the store
    starts from defaults. There is no migration step.
    """

    def __init__(
        self,
        engine: Engine,
        name: str = settings.store_slot,
        version: int = settings.store_version,
    ):
        self.engine = engine
        self.name = name
        self.version = version

    def load(self) -> StoreState | None:
        with Session(self.engine) as session:
            slot = session.get(StoreSlot, self.name)
        if slot is None:
            return None
        if slot.version != self.version:
            logger.warning(
                f"Store slot {self.name!r} is version {slot.version}, "
                f"expected {self.version}; starting from defaults"
            )
            return None
        try:
            return StoreState.model_validate_json(slot.payload)
        except ValidationError:
            logger.exception(f"Store slot {self.name!r} is unreadable; starting from defaults")
            return None

    def save(self, state: StoreState) -> None:
        with Session(self.engine) as session:
            slot = session.get(StoreSlot, self.name)
            if slot is None:
                slot = StoreSlot(name=self.name, version=self.version)
            slot.version = self.version
            slot.payload = state.model_dump_json()
            slot.updated_at = datetime.utcnow()
            session.add(slot)
            session.commit()
