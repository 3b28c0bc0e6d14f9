"""SQL node repository."""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from fleet_engine.core.errors import DuplicateNode, NodeNotFound, PersistenceError
from fleet_engine.core.models import HARDWARE_CLASSES, HardwareClass, Node, ResourceOverride, Role
from fleet_engine.core.repository import NodeRepository
from fleet_engine.infrastructure.sql.database import SessionLocal
from fleet_engine.infrastructure.sql.models import NodeORM

logger = logging.getLogger(__name__)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_aware_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _hardware(name: str) -> HardwareClass:
    return HARDWARE_CLASSES.get(name) or HardwareClass(name, cpu_cores=1, memory_mb=512)


def node_to_orm(node: Node) -> NodeORM:
    """Convert node domain model to ORM."""
    return NodeORM(
        identifier=node.identifier,
        hostname=node.hostname,
        role=node.role,
        hardware_class=node.hardware.name,
        mesh_address=node.mesh_address,
        management_host=node.management_host,
        lifecycle_state=node.lifecycle_state,
        run_status=node.run_status,
        blocked_phase=node.blocked_phase,
        blocked_kind=node.blocked_kind,
        blocked_reason=node.blocked_reason,
        lease_owner=node.lease_owner,
        lease_expires_at=to_naive_utc(node.lease_expires_at),
        cpu_limit=node.resources.cpu_limit,
        memory_limit_mb=node.resources.memory_limit_mb,
        created_at=to_naive_utc(node.created_at),
        updated_at=to_naive_utc(node.updated_at),
        version=node.version,
    )


def orm_to_node(orm: NodeORM) -> Node:
    """Convert ORM to node domain model."""
    return Node(
        identifier=orm.identifier,
        hostname=orm.hostname,
        role=orm.role,
        hardware=_hardware(orm.hardware_class),
        mesh_address=orm.mesh_address,
        management_host=orm.management_host,
        lifecycle_state=orm.lifecycle_state,
        run_status=orm.run_status,
        blocked_phase=orm.blocked_phase,
        blocked_kind=orm.blocked_kind,
        blocked_reason=orm.blocked_reason,
        lease_owner=orm.lease_owner,
        lease_expires_at=to_aware_utc(orm.lease_expires_at),
        resources=ResourceOverride(
            cpu_limit=orm.cpu_limit,
            memory_limit_mb=orm.memory_limit_mb,
        ),
        created_at=to_aware_utc(orm.created_at),
        updated_at=to_aware_utc(orm.updated_at),
        version=orm.version,
    )


class SqlNodeRepository(NodeRepository):
    """Repository for fleet nodes."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    def _get_session(self):
        return self._session_factory()

    def create(self, node: Node) -> None:
        """Register a new node."""
        session = self._get_session()
        try:
            session.add(node_to_orm(node))
            session.commit()
            logger.debug(f"[node_repo] registered node {node.identifier}")
        except IntegrityError as e:
            session.rollback()
            raise DuplicateNode(f"Node {node.identifier} already exists") from e
        finally:
            session.close()

    def get(self, node_id: str) -> Optional[Node]:
        session = self._get_session()
        try:
            orm = session.get(NodeORM, node_id)
            if not orm:
                return None
            return orm_to_node(orm)
        finally:
            session.close()

    def list(self, role: Optional[Role] = None) -> List[Node]:
        session = self._get_session()
        try:
            query = session.query(NodeORM)
            if role is not None:
                query = query.filter(NodeORM.role == role)
            return [orm_to_node(orm) for orm in query.order_by(NodeORM.identifier).all()]
        finally:
            session.close()

    def update(self, node: Node) -> None:
        """Update node (lease columns excluded)."""
        session = self._get_session()
        try:
            orm = session.get(NodeORM, node.identifier)
            if not orm:
                raise NodeNotFound(f"Node {node.identifier} not found")

            orm.hostname = node.hostname
            orm.mesh_address = node.mesh_address
            orm.management_host = node.management_host
            orm.lifecycle_state = node.lifecycle_state
            orm.run_status = node.run_status
            orm.blocked_phase = node.blocked_phase
            orm.blocked_kind = node.blocked_kind
            orm.blocked_reason = node.blocked_reason
            orm.cpu_limit = node.resources.cpu_limit
            orm.memory_limit_mb = node.resources.memory_limit_mb
            orm.updated_at = to_naive_utc(node.updated_at)
            orm.version = orm.version + 1

            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to update node {node.identifier}: {e}") from e
        finally:
            session.close()

    def try_claim(self, node_id: str, owner: str, lease_seconds: int) -> Optional[Node]:
        """Atomically claim the node lease with a conditional UPDATE."""
        session = self._get_session()
        try:
            now = to_naive_utc(datetime.now(timezone.utc))
            result = session.execute(
                update(NodeORM)
                .where(NodeORM.identifier == node_id)
                .where(
                    or_(
                        NodeORM.lease_owner.is_(None),
                        NodeORM.lease_owner == owner,
                        NodeORM.lease_expires_at.is_(None),
                        NodeORM.lease_expires_at <= now,
                    )
                )
                .values(
                    lease_owner=owner,
                    lease_expires_at=now + timedelta(seconds=lease_seconds),
                    version=NodeORM.version + 1,
                )
            )
            session.commit()

            if result.rowcount == 0:
                if session.get(NodeORM, node_id) is None:
                    raise NodeNotFound(f"Node {node_id} not found")
                logger.debug(f"[node_repo] try_claim {node_id} by {owner} -> held")
                return None

            orm = session.get(NodeORM, node_id)
            session.refresh(orm)
            return orm_to_node(orm)
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to claim node {node_id}: {e}") from e
        finally:
            session.close()

    def renew(self, node_id: str, owner: str, lease_seconds: int) -> Optional[Node]:
        """Extend the lease only while `owner` still holds it."""
        session = self._get_session()
        try:
            now = to_naive_utc(datetime.now(timezone.utc))
            result = session.execute(
                update(NodeORM)
                .where(NodeORM.identifier == node_id)
                .where(NodeORM.lease_owner == owner)
                .values(
                    lease_expires_at=now + timedelta(seconds=lease_seconds),
                    version=NodeORM.version + 1,
                )
            )
            session.commit()

            if result.rowcount == 0:
                if session.get(NodeORM, node_id) is None:
                    raise NodeNotFound(f"Node {node_id} not found")
                logger.warning(f"[node_repo] renew {node_id} by {owner} -> lease lost")
                return None

            orm = session.get(NodeORM, node_id)
            session.refresh(orm)
            return orm_to_node(orm)
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to renew lease on {node_id}: {e}") from e
        finally:
            session.close()

    def release(self, node_id: str, owner: str) -> None:
        session = self._get_session()
        try:
            session.execute(
                update(NodeORM)
                .where(NodeORM.identifier == node_id)
                .where(NodeORM.lease_owner == owner)
                .values(lease_owner=None, lease_expires_at=None, version=NodeORM.version + 1)
            )
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Failed to release node {node_id}: {e}") from e
        finally:
            session.close()
