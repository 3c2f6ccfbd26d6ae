"""Append-only, hash-chained audit log of domain events.

Indexers read it; the ledger never does.
"""
import json
from typing import List, Tuple

from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from models import ChainHead, Event
from utils import GENESIS, compute_hash, verify_chain

HEAD_ID = 1


class AuditLog:
    def __init__(self, db: Session):
        self.db = db

    def emit(self, event: BaseModel, address: str) -> Event:
        payload = event.model_dump(mode="json")
        timestamp = payload["timestamp"]
        head = self._lock_head()
        prev_hash = head.hash
        ev = Event(
            type=type(event).__name__,
            address=address,
            payload=json.dumps(payload),
            timestamp=timestamp,
            prev_hash=prev_hash,
            hash=compute_hash(prev_hash, payload, timestamp),
        )
        self.db.add(ev)
        head.hash = ev.hash
        self.db.flush()
        return ev

    def _lock_head(self) -> ChainHead:
        """Row-lock the chain head; emitters queue here until the holder commits."""
        head = self.db.get(ChainHead, HEAD_ID, with_for_update=True, populate_existing=True)
        return head if head is not None else ensure_chain_head(self.db)

    def entries(self, address: str | None = None, page: int = 1, page_size: int = 50) -> Tuple[List[dict], int]:
        base = select(Event)
        if address:
            base = base.where(Event.address == address)
        total = self.db.scalar(select(func.count()).select_from(base.subquery()))
        rows = self.db.scalars(
            base.order_by(Event.id.asc())
                .offset((page - 1) * page_size)
                .limit(page_size)
        ).all()
        return [_as_dict(e) for e in rows], total or 0

    def verify(self) -> Tuple[bool, int]:
        chain = [_as_dict(e) for e in self.db.scalars(select(Event).order_by(Event.id.asc())).all()]
        return verify_chain(chain), len(chain)


def ensure_chain_head(db: Session) -> ChainHead:
    """Create the head row, pointing at the newest event or GENESIS."""
    head = db.get(ChainHead, HEAD_ID)
    if head is None:
        last = db.scalar(select(Event).order_by(Event.id.desc()).limit(1))
        head = ChainHead(id=HEAD_ID, hash=last.hash if last else GENESIS)
        db.add(head)
        db.flush()
    return head


def _as_dict(e: Event) -> dict:
    return {
        "id": e.id,
        "type": e.type,
        "address": e.address,
        "payload": json.loads(e.payload),
        "timestamp": e.timestamp,
        "prev_hash": e.prev_hash,
        "hash": e.hash,
    }
