"""Key-value record store over the ``records`` table.

Registration gets its exactly-once semantics from :meth:`RecordStore.create`
refusing an occupied address; there is no other uniqueness index.
"""
import logging
import time
from typing import Callable, List, Optional

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import AddressOccupied, NotFound
from models import Record
from schemas import RecordKind, load_payload

logger = logging.getLogger(__name__)


class RecordStore:
    def __init__(self, db: Session, clock: Callable[[], int] = lambda: int(time.time())):
        self.db = db
        self.clock = clock

    def _get(self, address: str, kind: Optional[RecordKind]) -> Record:
        row = self.db.get(Record, address)
        if row is None or (kind is not None and row.kind != RecordKind(kind).value):
            label = RecordKind(kind).value if kind is not None else "record"
            raise NotFound(f"{label} not found at {address}")
        return row

    def create(self, address: str, kind: RecordKind, payload: BaseModel,
               owner: Optional[str] = None, parent: Optional[str] = None) -> BaseModel:
        if self.db.get(Record, address) is not None:
            raise AddressOccupied(f"address {address} is already occupied")
        row = Record(
            address=address,
            kind=RecordKind(kind).value,
            schema_version=payload.schema_version,
            owner=owner,
            parent=parent,
            payload=payload.model_dump_json(),
            created_at=self.clock(),
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError:
            # lost a concurrent create; the whole operation is abandoned
            self.db.rollback()
            raise AddressOccupied(f"address {address} is already occupied") from None
        logger.debug("created %s at %s", row.kind, address)
        return payload

    def find(self, address: str, kind: Optional[RecordKind] = None) -> BaseModel:
        row = self._get(address, kind)
        return load_payload(row.kind, row.payload)

    def exists(self, address: str) -> bool:
        return self.db.get(Record, address) is not None

    def mutate(self, address: str, updater: Callable[[BaseModel], Optional[BaseModel]],
               kind: Optional[RecordKind] = None) -> BaseModel:
        """Apply ``updater`` to a copy of the record and write the result back.

        ``updater`` may edit the copy in place or return a replacement. The row
        is selected FOR UPDATE where the backend supports it.
        """
        row = self.db.scalar(select(Record).where(Record.address == address).with_for_update())
        if row is None or (kind is not None and row.kind != RecordKind(kind).value):
            raise NotFound(f"record not found at {address}")
        draft = load_payload(row.kind, row.payload)
        updated = updater(draft)
        if updated is None:
            updated = draft
        row.payload = updated.model_dump_json()
        self.db.flush()
        return updated

    def select(self, kind: RecordKind, owner: Optional[str] = None,
               parent: Optional[str] = None) -> List[tuple]:
        """(address, payload) pairs of one kind, oldest first."""
        stmt = select(Record).where(Record.kind == RecordKind(kind).value)
        if owner is not None:
            stmt = stmt.where(Record.owner == owner)
        if parent is not None:
            stmt = stmt.where(Record.parent == parent)
        rows = self.db.scalars(stmt.order_by(Record.created_at.asc(), Record.address.asc())).all()
        return [(r.address, load_payload(r.kind, r.payload)) for r in rows]
