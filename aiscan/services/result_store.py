import asyncio
import json
from typing import Dict, List, Optional, Union

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from aiscan.core.config import Config
from aiscan.db.models import FlaggedResult
from aiscan.db.sessions import create_database, make_session_factory
from aiscan.schemas import (
    PerFrameResult,
    SummaryResult,
    result_artifacts,
    result_likelihood,
    result_rationale,
)


class ResultStore:
    """Keeps analyses whose likelihood is above the flag threshold."""

    def __init__(self, database_url: str = None, threshold: float = None):
        self.database_url = database_url or Config.DATABASE_URL
        self.threshold = Config.FLAG_THRESHOLD if threshold is None else threshold
        self.engine = create_database(self.database_url)
        self.SessionLocal = make_session_factory(self.engine)

    def is_flagged(self, result: Union[SummaryResult, PerFrameResult]) -> bool:
        return result_likelihood(result) > self.threshold

    def _insert(self, source: str, session_id: Optional[str], filename: Optional[str],
                result: Union[SummaryResult, PerFrameResult], raw_text: Optional[str]) -> int:
        row = FlaggedResult(
            source=source,
            session_id=session_id,
            filename=filename,
            kind=result.kind,
            likelihood=result_likelihood(result),
            artifacts=json.dumps(result_artifacts(result)),
            rationale=json.dumps(result_rationale(result)),
            raw_text=raw_text,
        )
        with self.SessionLocal() as db:
            db.add(row)
            db.commit()
            return row.id

    async def record_if_flagged(self, source: str, result: Union[SummaryResult, PerFrameResult],
                                session_id: str = None, filename: str = None,
                                raw_text: str = None) -> Optional[int]:
        """Row id when stored, None when below threshold or the database failed."""
        if not self.is_flagged(result):
            return None
        try:
            row_id = await asyncio.to_thread(self._insert, source, session_id, filename, result, raw_text)
        except SQLAlchemyError as e:
            logger.warning(f"Could not store flagged result: {e}")
            return None
        logger.info(f"Flagged {source} result stored as #{row_id}")
        return row_id

    def list_flagged(self, limit: int = 100) -> List[Dict]:
        with self.SessionLocal() as db:
            rows = db.execute(
                select(FlaggedResult).order_by(FlaggedResult.created_at.desc(), FlaggedResult.id.desc()).limit(limit)
            ).scalars().all()
            return [
                {
                    "id": row.id,
                    "source": row.source,
                    "sessionId": row.session_id,
                    "filename": row.filename,
                    "likelihood": row.likelihood,
                    "artifacts": json.loads(row.artifacts or "[]"),
                    "rationale": json.loads(row.rationale or "[]"),
                    "createdAt": row.created_at.isoformat() if row.created_at else "",
                }
                for row in rows
            ]

    def close(self):
        self.engine.dispose()
