# ingest/schemas.py
from datetime import datetime

from pydantic import BaseModel


class RequestMeta(BaseModel):
    """Metadata stored alongside every request row."""
    uploaded: bool


class StoredRequestOut(BaseModel):
    id: int
    backend_name: str
    ts: datetime
    meta: RequestMeta
