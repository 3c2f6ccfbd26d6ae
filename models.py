from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import BigInteger, Integer, String, Text
from database import Base

class Record(Base):
    """One entry of the key-value record store, keyed by its derived address."""
    __tablename__ = "records"
    address: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(32), index=True)
    schema_version: Mapped[str] = mapped_column(String(8))
    # owner/parent are lookup columns only; the payload is authoritative
    owner: Mapped[Optional[str]] = mapped_column(String(128), index=True, nullable=True)
    parent: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    payload: Mapped[str] = mapped_column(Text)
    created_at: Mapped[int] = mapped_column(BigInteger)

class Event(Base):
    __tablename__ = "events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    type: Mapped[str] = mapped_column(String(50))
    address: Mapped[str] = mapped_column(String(64), index=True)
    payload: Mapped[str] = mapped_column(Text)
    timestamp: Mapped[int] = mapped_column(BigInteger)
    # each link can be taken once; a forked chain fails on insert
    prev_hash: Mapped[str] = mapped_column(String(128), unique=True)
    hash: Mapped[str] = mapped_column(String(128))

class ChainHead(Base):
    """Single row holding the hash of the newest audit event."""
    __tablename__ = "chain_head"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    hash: Mapped[str] = mapped_column(String(128))
