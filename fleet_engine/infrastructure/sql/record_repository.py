"""SQL execution record repository (append-only)."""

from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from fleet_engine.core.errors import PersistenceError
from fleet_engine.core.models import ExecutionRecord, RecordOutcome
from fleet_engine.core.repository import ExecutionRecordRepository
from fleet_engine.infrastructure.sql.database import SessionLocal
from fleet_engine.infrastructure.sql.models import ExecutionRecordORM
from fleet_engine.infrastructure.sql.node_repository import to_aware_utc, to_naive_utc


def record_to_orm(record: ExecutionRecord) -> ExecutionRecordORM:
    return ExecutionRecordORM(
        record_id=record.record_id,
        node_id=record.node_id,
        phase=record.phase,
        run_id=record.run_id,
        sequence=record.sequence,
        attempt=record.attempt,
        outcome=record.outcome,
        failure_kind=record.failure_kind,
        exit_code=record.exit_code,
        transport=record.transport,
        started_at=to_naive_utc(record.started_at),
        finished_at=to_naive_utc(record.finished_at),
        stdout=record.stdout,
        stderr=record.stderr,
        message=record.message,
    )


def orm_to_record(orm: ExecutionRecordORM) -> ExecutionRecord:
    return ExecutionRecord(
        record_id=orm.record_id,
        node_id=orm.node_id,
        phase=orm.phase,
        run_id=orm.run_id,
        sequence=orm.sequence,
        attempt=orm.attempt,
        outcome=orm.outcome,
        failure_kind=orm.failure_kind,
        exit_code=orm.exit_code,
        transport=orm.transport,
        started_at=to_aware_utc(orm.started_at),
        finished_at=to_aware_utc(orm.finished_at),
        stdout=orm.stdout or "",
        stderr=orm.stderr or "",
        message=orm.message,
    )


class SqlExecutionRecordRepository(ExecutionRecordRepository):
    """Execution records, one row per executor invocation."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    def _get_session(self):
        return self._session_factory()

    def append(self, record: ExecutionRecord) -> None:
        """Insert the record in a single transaction."""
        session = self._get_session()
        try:
            session.add(record_to_orm(record))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(
                f"Failed to append record for {record.node_id}/{record.phase}: {e}"
            ) from e
        finally:
            session.close()

    def list_for_node(
        self,
        node_id: str,
        phase: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[ExecutionRecord]:
        if limit is not None and limit <= 0:
            return []

        session = self._get_session()
        try:
            query = session.query(ExecutionRecordORM).filter(
                ExecutionRecordORM.node_id == node_id
            )
            if phase is not None:
                query = query.filter(ExecutionRecordORM.phase == phase)

            if limit is not None:
                orms = query.order_by(ExecutionRecordORM.id.desc()).limit(limit).all()
                orms.reverse()
            else:
                orms = query.order_by(ExecutionRecordORM.id.asc()).all()

            return [orm_to_record(orm) for orm in orms]
        finally:
            session.close()

    def latest_by_phase(self, node_id: str) -> Dict[str, ExecutionRecord]:
        latest: Dict[str, ExecutionRecord] = {}
        for record in self.list_for_node(node_id):
            if record.sequence is not None:
                latest[record.phase] = record
        return latest

    def ever_succeeded(self, node_id: str, phase: str) -> bool:
        session = self._get_session()
        try:
            return session.query(ExecutionRecordORM.id).filter(
                ExecutionRecordORM.node_id == node_id,
                ExecutionRecordORM.phase == phase,
                ExecutionRecordORM.outcome == RecordOutcome.SUCCESS,
            ).first() is not None
        finally:
            session.close()
