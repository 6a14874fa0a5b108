from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import Column, DateTime, Integer, String, create_engine, select
from sqlalchemy.orm import declarative_base, sessionmaker

from .exceptions import ValidationError

LOGGER = logging.getLogger(__name__)

Base = declarative_base()


class PushTokenModel(Base):
    __tablename__ = "push_tokens"
    id = Column(Integer, primary_key=True)
    token = Column(String(255), unique=True, nullable=False)
    platform = Column(String(20), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


def create_session_factory(database_url: str) -> sessionmaker:
    engine_kwargs: dict[str, Any] = {"future": True}
    if str(database_url).startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        pool_pre_ping = False
    else:
        pool_pre_ping = True
    engine = create_engine(database_url, pool_pre_ping=pool_pre_ping, **engine_kwargs)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 client timestamp into naive UTC; empty values mean "now"."""
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ValidationError("timestamp must be an ISO-8601 string")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError("timestamp must be an ISO-8601 string") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _token_to_dict(model: PushTokenModel) -> Dict[str, Any]:
    return {
        "id": model.id,
        "token": model.token,
        "platform": model.platform,
        "createdAt": _iso(model.created_at),
        "updatedAt": _iso(model.updated_at),
    }


class PushTokenRegistry:
    """Device token store backing broadcasts."""

    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def list_addresses(self) -> List[str]:
        with self._sessions() as session:
            rows = session.execute(select(PushTokenModel.token).order_by(PushTokenModel.id)).all()
            return [token for (token,) in rows]

    def list_tokens(self) -> List[Dict[str, Any]]:
        with self._sessions() as session:
            rows = session.scalars(select(PushTokenModel).order_by(PushTokenModel.id)).all()
            return [_token_to_dict(row) for row in rows]

    def find_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        with self._sessions() as session:
            row = session.scalars(select(PushTokenModel).where(PushTokenModel.token == token)).one_or_none()
            return _token_to_dict(row) if row else None

    def register(self, token: str, platform: str, timestamp: Optional[datetime] = None) -> Tuple[Dict[str, Any], bool]:
        """Insert ``token`` or refresh an existing row. Returns ``(record, created)``."""
        stamp = timestamp or datetime.utcnow()
        with self._sessions.begin() as session:
            existing = session.scalars(select(PushTokenModel).where(PushTokenModel.token == token)).one_or_none()
            if existing is not None:
                existing.platform = platform
                existing.updated_at = stamp
                session.flush()
                LOGGER.info("Updated push token %s (%s)", existing.id, platform)
                return _token_to_dict(existing), False

            row = PushTokenModel(token=token, platform=platform, created_at=stamp, updated_at=stamp)
            session.add(row)
            session.flush()
            LOGGER.info("Registered push token %s (%s)", row.id, platform)
            return _token_to_dict(row), True

    def delete(self, token_id: int) -> bool:
        with self._sessions.begin() as session:
            row = session.get(PushTokenModel, token_id)
            if row is None:
                return False
            session.delete(row)
            LOGGER.info("Deleted push token %s", token_id)
            return True
