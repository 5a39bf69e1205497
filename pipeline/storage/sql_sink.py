"""
SQL run sink: writes air_measurements and processing_log rows.

SQLAlchemy Core tables, no ORM in the pipeline. The engine is
synchronous, so the async entry point runs the write in a worker thread.
"""

import asyncio
import logging
import uuid
from typing import List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from pipeline.aggregation.models import Snapshot
from pipeline.storage.rows import RunSummary, parse_run_summary_row, reading_row, run_summary_row

logger = logging.getLogger(__name__)

metadata = MetaData()

air_measurements = Table(
    "air_measurements", metadata,
    Column("id", String(36), primary_key=True),
    Column("run_id", String(36), nullable=False, index=True),
    Column("area", String(64), nullable=False),
    Column("source_id", String(32), nullable=False),
    Column("location_name", String(128)),
    Column("lat", Float, nullable=False),
    Column("lon", Float, nullable=False),
    Column("pm25", Float),
    Column("pm10", Float),
    Column("no2", Float),
    Column("so2", Float),
    Column("co", Float),
    Column("o3", Float),
    Column("temperature", Float),
    Column("humidity", Float),
    Column("wind_speed", Float),
    Column("pressure", Float),
    Column("observed_at", DateTime(timezone=True), nullable=False),
    Column("confidence", Float, nullable=False),
)

processing_log = Table(
    "processing_log", metadata,
    Column("run_id", String(36), primary_key=True),
    Column("area", String(64), nullable=False, index=True),
    Column("generated_at", DateTime(timezone=True), nullable=False),
    Column("status", String(16), nullable=False),
    Column("sources_count", Integer, nullable=False),
    Column("sources_used", Text),
    Column("measurements_count", Integer, nullable=False),
    Column("quality_flags", Text),
    Column("avg_pm25", Float),
    Column("max_pm25", Float),
    Column("aqi", Integer),
    Column("data_completeness", Float),
)


class SqlRunSink:
    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, url: str) -> "SqlRunSink":
        return cls(create_engine(url, pool_pre_ping=True, pool_recycle=300))

    def ensure_schema(self) -> None:
        """Create the two tables when they do not exist yet."""
        metadata.create_all(self.engine)

    def write_run(self, snapshot: Snapshot) -> str:
        """Insert every reading and the run summary in one transaction."""
        run_id = str(uuid.uuid4())
        measurements = []
        for reading in snapshot.measurements:
            row = reading_row(reading, run_id, snapshot.area)
            row["id"] = str(uuid.uuid4())
            measurements.append(row)

        with Session(self.engine) as db:
            if measurements:
                db.execute(air_measurements.insert(), measurements)
            db.execute(processing_log.insert(), [run_summary_row(snapshot, run_id)])
            db.commit()

        logger.info(
            "Persisted run %s for %s: %d measurement(s)",
            run_id, snapshot.area, len(measurements),
        )
        return run_id

    async def write(self, snapshot: Snapshot) -> str:
        return await asyncio.to_thread(self.write_run, snapshot)

    def recent_runs(self, area: str, limit: int = 10) -> List[RunSummary]:
        with Session(self.engine) as db:
            rows = db.execute(
                select(processing_log)
                .where(processing_log.c.area == area)
                .order_by(processing_log.c.generated_at.desc())
                .limit(limit)
            ).mappings().all()
        return [parse_run_summary_row(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def build_sink(database_url: Optional[str]) -> Optional[SqlRunSink]:
    if not database_url:
        logger.info("DATABASE_URL not set; run results will not be persisted")
        return None
    return SqlRunSink.from_url(database_url)
