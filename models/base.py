from datetime import datetime, timezone
from sqlalchemy import BigInteger, Enum, Integer, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def enum_type(enum_cls: type, name: str) -> Enum:
    """Persist enum *values* ("started") rather than member names ("STARTED")"""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ============================================================================
# ENUMS
# ============================================================================

class SyncTrigger(str, enum.Enum):
    """What started a sync run"""
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class SyncStatus(str, enum.Enum):
    """Sync run status. STARTED is the only non-terminal status."""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncStatus.STARTED


class MappingStatus(str, enum.Enum):
    """Alias mapping lifecycle"""
    MAPPED = "mapped"
    UNMAPPED = "unmapped"
    DEFERRED = "deferred"


class CollectionType(str, enum.Enum):
    """Canonical collection type"""
    ATS = "ats"
    PRE_ORDER = "pre_order"
