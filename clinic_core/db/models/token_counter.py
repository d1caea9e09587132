"""QueueTokenCounter model: last token issued per admission scope and clinic day."""

from sqlalchemy import Column, Date, Integer, String

from clinic_core.db.base import Base


class QueueTokenCounter(Base):
    __tablename__ = "queue_token_counters"

    scope_key = Column(String(120), primary_key=True)
    clinic_day = Column(Date, primary_key=True)
    last_token = Column(Integer, nullable=False, default=0)
