from sqlalchemy import Column, Integer, String, DateTime
from models.base import Base, utcnow


class SizeAlias(Base):
    """
    Maps a raw size label to a canonical size for sort ordering.

    Lets format variants such as "XS/S (6-8)" and "XS/S(6-8)" sort identically.
    """
    __tablename__ = "size_aliases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    raw_size = Column(String(100), nullable=False, unique=True)
    canonical_size = Column(String(100), nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    updated_by = Column(String(255), nullable=True)
