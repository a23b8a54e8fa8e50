"""
Audit Trail Database Model.

Append-only record of every trip validation decision and every
business-relevant state change (corrections, restores, chain rebuilds).
Rows are never updated or deleted: the ORM refuses both, for flushed
instances and for bulk statements alike.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, Enum, Index, event
from sqlalchemy.orm import Session
from fleet_backend.app.db.session import Base
from fleet_backend.app.core.clock import utc_now
from fleet_backend.app.core.exceptions import AuditTrailImmutableError
from fleet_backend.app.models.trip_enums import AuditSeverity


class AuditTrailEntry(Base):
    """
    Audit trail entry.

    ``validation_results`` holds the structured findings of the decision;
    ``changes_made`` holds before/after snapshots for state changes.
    """
    __tablename__ = "audit_trail"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    organization_id = Column(Integer, nullable=True, index=True)

    # What happened
    operation_type = Column(String(50), nullable=False, index=True)
    operation_category = Column(String(50), nullable=False)
    action_performed = Column(Text, nullable=False)

    # Which entity
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True)
    entity_description = Column(String(255), nullable=True)

    # Who and when
    performed_by = Column(Integer, nullable=True)
    user_role = Column(String(50), nullable=True)
    performed_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    severity = Column(
        Enum(AuditSeverity, values_callable=lambda enum_cls: [member.value for member in enum_cls]),
        nullable=False,
        default=AuditSeverity.INFO,
    )

    # Payloads
    changes_made = Column(JSON, nullable=True)
    validation_results = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)
    tags = Column(JSON, nullable=True)

    __table_args__ = (
        Index('ix_audit_trail_entity', 'entity_type', 'entity_id', 'performed_at'),
        Index('ix_audit_trail_severity', 'severity', 'performed_at'),
    )

    def __repr__(self):
        return f"<AuditTrailEntry(id={self.id}, op='{self.operation_type}', severity='{self.severity}')>"


@event.listens_for(AuditTrailEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise AuditTrailImmutableError("update")


@event.listens_for(AuditTrailEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AuditTrailImmutableError("delete")


@event.listens_for(Session, "do_orm_execute")
def _reject_bulk_modification(orm_execute_state):
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is not None and mapper.class_ is AuditTrailEntry:
        raise AuditTrailImmutableError("update" if orm_execute_state.is_update else "delete")
