"""
Column Helpers
==============

Defaults shared by the pipeline's ORM models.

Version: 0.1.0
"""

import uuid
from datetime import UTC, datetime


def new_id() -> str:
    """Generate a string primary key."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)
