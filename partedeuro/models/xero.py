"""Persisted Xero OAuth token set (single row)."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text

from partedeuro.core.database import Base


class XeroToken(Base):
    __tablename__ = "xero_tokens"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String(64))
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    token_set = Column(JSON)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
