from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


class FlaggedResult(Base):
    __tablename__ = 'flagged_results'
    id = Column(Integer, primary_key=True)
    source = Column(String(100), nullable=False, index=True)  # web-upload|recording|<client source>
    session_id = Column(String(64), index=True)
    filename = Column(String(255))
    kind = Column(String(20), nullable=False)  # summary|per_frame
    likelihood = Column(Float, nullable=False)
    artifacts = Column(Text)  # JSON list
    rationale = Column(Text)  # JSON list
    raw_text = Column(Text)
    created_at = Column(DateTime, default=_utcnow)
