# ingest/models.py
from sqlalchemy import JSON, Column, DateTime, Integer, LargeBinary, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from ingest.db import Base


class StoredRequest(Base):
    __tablename__ = "requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    backend_name = Column(Text, nullable=False)
    ts = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    meta = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    image = Column(LargeBinary, nullable=True)
