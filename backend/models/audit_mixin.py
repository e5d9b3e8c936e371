from sqlalchemy import Column, DateTime, String
from datetime import datetime
import os
import pytz

APP_TIMEZONE = pytz.timezone(os.getenv("APP_TIMEZONE", "Asia/Jakarta"))


def now_local() -> datetime:
    """Current time in the application timezone (Asia/Jakarta unless configured)."""
    return datetime.now(APP_TIMEZONE)


class TimestampMixin:
    """Mixin that provides created/updated timestamps and user info.

    Payment rows are never soft-deleted: a cancelled payment stays in place
    and a new row supersedes it, so there is no deleted_at column here.
    """
    # DateTime(timezone=True) ensures the timezone info is persisted in the database.
    created_at = Column(DateTime(timezone=True), default=now_local)
    updated_at = Column(DateTime(timezone=True), onupdate=now_local)
    created_by = Column(String, nullable=True)
    updated_by = Column(String, nullable=True)
