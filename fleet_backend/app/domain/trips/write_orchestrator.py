"""
Trip Write Orchestrator (Domain Logic).

The synchronous pre-commit gate for every trip insert, update, delete and
restore, plus the chain-wide maintenance writes (odometer corrections and
mileage chain rebuilds).

Every call runs under the vehicle/driver serialization point and produces
exactly one audit entry: committed together with the trip on success, or
written on its own after rollback when the write is rejected.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.core.clock import as_utc, utc_now
from fleet_backend.app.core.config import IntegrityThresholds, settings
from fleet_backend.app.core.exceptions import (
    CorrectnessViolation,
    DependentDataError,
    DuplicateSerialError,
    ResourceNotFoundError,
    StorageError,
    TripValidationError,
    ValueRangeViolation,
)
from fleet_backend.app.models.audit_trail import AuditTrailEntry
from fleet_backend.app.models.trip import Trip
from fleet_backend.app.models.trip_enums import AuditSeverity, TripType, ValidationOutcome, WriteMode
from fleet_backend.app.services import findings as F
from fleet_backend.app.services.audit_trail import (
    AuditCategory,
    AuditOperation,
    record_decision,
    record_entry,
)
from fleet_backend.app.services.cache import invalidate_mileage_chain
from fleet_backend.app.services.entity_locking import entity_locks, lock_keys
from fleet_backend.app.services.findings import Finding
from fleet_backend.app.services.fuel_baseline import get_fuel_baseline
from fleet_backend.app.services.mileage_chain import (
    MileageSegment,
    affected_end_trip_ids,
    build_segments,
    downstream_dependents,
    efficiency_breaches,
    plan_odometer_correction,
    prospective_efficiency,
    recompute_vehicle_chain,
    refresh_adjacent_segments,
)
from fleet_backend.app.services.odometer_continuity import check_continuity, scan_odometer_gaps
from fleet_backend.app.services.overlap_detection import check_trip_conflicts
from fleet_backend.app.services.trip_records import TripRecord
from fleet_backend.app.services.trip_repository import (
    get_driver,
    get_trip,
    get_vehicle,
    serial_number_taken,
    vehicle_history,
    vehicle_trip_models,
)
from fleet_backend.app.services.value_range import evaluate_trip_values

logger = logging.getLogger("fleet_backend.integrity.writes")

WRITABLE_FIELDS = (
    "trip_serial_number",
    "vehicle_id",
    "driver_id",
    "trip_type",
    "notes",
    "trip_start_date",
    "trip_end_date",
    "start_km",
    "end_km",
    "refueling_done",
    "fuel_quantity",
    "fuel_rate_per_liter",
    "fuel_expense",
    "driver_expense",
    "toll_expense",
    "other_expense",
    "breakdown_expense",
    "miscellaneous_expense",
)

OPERATION_BY_MODE = {
    WriteMode.INSERT: AuditOperation.TRIP_INSERT,
    WriteMode.UPDATE: AuditOperation.TRIP_UPDATE,
    WriteMode.DELETE: AuditOperation.TRIP_DELETE,
    WriteMode.RESTORE: AuditOperation.TRIP_RESTORE,
}


@dataclass
class WriteContext:
    """Caller identity and tenant scope for one write."""
    organization_id: int
    user_id: Optional[int] = None
    role: Optional[str] = None
    thresholds: Optional[IntegrityThresholds] = None

    @property
    def rules(self) -> IntegrityThresholds:
        return self.thresholds or settings.integrity


@dataclass
class WriteResult:
    trip: Trip
    mode: WriteMode
    outcome: ValidationOutcome
    findings: List[Finding]
    audit_entry: AuditTrailEntry
    chain_changes: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def severity(self) -> AuditSeverity:
        return F.worst_severity(self.findings)

    @property
    def warnings(self) -> List[Finding]:
        return [f for f in self.findings if f.severity == AuditSeverity.WARNING]


def _normalize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    values = {k: v for k, v in payload.items() if k in WRITABLE_FIELDS}
    for key in ("trip_start_date", "trip_end_date"):
        if key in values and isinstance(values[key], datetime):
            values[key] = as_utc(values[key])
    if values.get("trip_type") is not None:
        values["trip_type"] = TripType(values["trip_type"])
    elif "trip_type" in values:
        values["trip_type"] = TripType.NORMAL
    return values


def _is_serial_violation(exc: IntegrityError) -> bool:
    # PostgreSQL names the constraint, SQLite names the columns
    text = str(exc.orig)
    return "uq_trips_org_serial" in text or "trips.trip_serial_number" in text


def _chain_findings(changes: Sequence[Dict[str, Any]]) -> List[Finding]:
    return [
        F.info(
            "segment_recomputed",
            trip_id=change["trip_id"],
            trip_serial=change["trip_serial_number"],
            old_kmpl=change["old_kmpl"],
            new_kmpl=change["new_kmpl"],
        )
        for change in changes
    ]


class TripWriteOrchestrator:

    @staticmethod
    async def validate_and_commit(
        db: AsyncSession,
        ctx: WriteContext,
        mode: WriteMode,
        payload: Optional[Dict[str, Any]] = None,
        trip_id: Optional[int] = None,
        hard_delete: bool = False,
        reason: Optional[str] = None,
    ) -> WriteResult:
        """
        Validate a trip write and commit it with its audit entry.

        Flow:
        1. Load the existing trip (update/delete/restore)
        2. Acquire vehicle and driver locks (sorted keys)
        3. Value range and edge-case validation
        4. Odometer continuity against the locked snapshot
        5. Vehicle and driver overlap detection
        6. Persist, refresh adjacent mileage segments
        7. One consolidated audit entry at the worst severity, then commit

        Args:
            db: Database session; committed or rolled back by this call
            ctx: Tenant scope and caller identity
            mode: insert, update, delete or restore
            payload: Trip fields (insert: full set; update: changed fields)
            trip_id: Target trip for update/delete/restore
            hard_delete: Physically remove instead of soft-deleting (delete only)
            reason: Free-text reason stored with the audit entry

        Returns:
            WriteResult with the committed trip and the audit entry

        Raises:
            CorrectnessViolation, ValueRangeViolation, VehicleConflictError,
            DriverConflictError, DuplicateSerialError, DependentDataError:
                write rejected; an ``error`` audit entry was recorded
            ResourceNotFoundError: unknown trip, vehicle or driver
            StorageError: database failure
        """
        mode = WriteMode(mode)
        existing: Optional[Trip] = None
        if mode != WriteMode.INSERT:
            existing = await get_trip(db, ctx.organization_id, trip_id, include_deleted=(mode == WriteMode.RESTORE))
            if existing is None:
                raise ResourceNotFoundError("Trip", trip_id)
            if mode == WriteMode.RESTORE and existing.deleted_at is None:
                raise ResourceNotFoundError("Deleted trip", trip_id)

        candidate = TripWriteOrchestrator._build_candidate(ctx, mode, existing, payload or {})
        await TripWriteOrchestrator._check_references(db, ctx, candidate)

        previous = TripRecord.from_model(existing) if existing is not None else None
        keys = lock_keys(
            ctx.organization_id,
            vehicle_ids=[candidate.vehicle_id, previous.vehicle_id if previous else None],
            driver_ids=[candidate.driver_id, previous.driver_id if previous else None],
        )

        try:
            async with entity_locks(db, keys):
                if mode == WriteMode.DELETE:
                    result = await TripWriteOrchestrator._delete(db, ctx, existing, hard_delete, reason)
                else:
                    result = await TripWriteOrchestrator._upsert(db, ctx, mode, candidate, existing, previous, reason)
                await db.commit()
        except TripValidationError as exc:
            await db.rollback()
            await TripWriteOrchestrator._record_rejection(db, ctx, mode, candidate, exc, reason)
            raise
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error(
                "Trip write failed in storage",
                extra={"mode": mode.value, "trip_id": trip_id, "error": str(exc)},
            )
            raise StorageError(cause=exc) from exc

        if not (mode == WriteMode.DELETE and hard_delete):
            await db.refresh(result.trip)

        for vehicle_id in {candidate.vehicle_id, previous.vehicle_id if previous else None} - {None}:
            await invalidate_mileage_chain(ctx.organization_id, vehicle_id)

        logger.info(
            "Trip write committed",
            extra={
                "mode": mode.value,
                "trip_id": result.trip.id,
                "organization_id": ctx.organization_id,
                "severity": result.severity.value,
                "outcome": result.outcome.value,
            },
        )
        return result

    # Validation pipeline

    @staticmethod
    def _build_candidate(
        ctx: WriteContext,
        mode: WriteMode,
        existing: Optional[Trip],
        payload: Dict[str, Any],
    ) -> TripRecord:
        values = _normalize_payload(payload)
        if existing is None:
            return TripRecord(organization_id=ctx.organization_id, **values)
        record = TripRecord.from_model(existing)
        if mode == WriteMode.UPDATE:
            return record.with_changes(**values)
        if mode == WriteMode.RESTORE:
            return record.with_changes(deleted_at=None)
        return record

    @staticmethod
    async def _check_references(db: AsyncSession, ctx: WriteContext, candidate: TripRecord) -> None:
        if await get_vehicle(db, ctx.organization_id, candidate.vehicle_id) is None:
            raise ResourceNotFoundError("Vehicle", candidate.vehicle_id)
        if candidate.driver_id is not None and await get_driver(db, ctx.organization_id, candidate.driver_id) is None:
            raise ResourceNotFoundError("Driver", candidate.driver_id)

    @staticmethod
    async def validate_candidate(
        db: AsyncSession,
        ctx: WriteContext,
        candidate: TripRecord,
        history: Sequence[TripRecord],
        previous: Optional[TripRecord] = None,
    ):
        """
        Run the validators in order against a locked history snapshot.

        ``previous`` is the stored version of an edited trip, so segments it
        leaves behind are checked as well.

        Returns:
            (all findings, value range result)

        Raises:
            The first hard rejection encountered
        """
        rules = ctx.rules
        baseline = await get_fuel_baseline(db, ctx.organization_id, candidate.vehicle_id)
        efficiency = prospective_efficiency(history, candidate)

        values = evaluate_trip_values(candidate, rules, baseline=baseline, efficiency_kmpl=efficiency)
        if values.outcome == ValidationOutcome.REJECTED:
            if values.is_correctness_violation:
                raise CorrectnessViolation(values.findings)
            raise ValueRangeViolation(values.findings)

        continuity = check_continuity(candidate, history, rules)
        collected = values.findings + continuity.findings
        if continuity.has_errors:
            raise CorrectnessViolation(collected)

        conflicts = await check_trip_conflicts(db, candidate)
        conflicts.raise_for_conflicts(collected)
        collected += conflicts.findings

        # Hard efficiency bounds on every other segment the write recomputes
        breaches = efficiency_breaches(history, candidate, previous, rules)
        if breaches:
            raise ValueRangeViolation(collected + [
                F.error(
                    "segment_efficiency_out_of_range",
                    trip_id=segment.end_trip.id,
                    trip_serial=segment.end_trip.label,
                    efficiency_kmpl=segment.kmpl,
                    min_kmpl=rules.min_efficiency_kmpl,
                    max_kmpl=rules.max_efficiency_kmpl,
                )
                for segment in breaches
            ])

        return collected, values

    @staticmethod
    async def _upsert(
        db: AsyncSession,
        ctx: WriteContext,
        mode: WriteMode,
        candidate: TripRecord,
        existing: Optional[Trip],
        previous: Optional[TripRecord],
        reason: Optional[str],
    ) -> WriteResult:
        if mode != WriteMode.RESTORE and (previous is None or candidate.trip_serial_number != previous.trip_serial_number):
            if await serial_number_taken(db, ctx.organization_id, candidate.trip_serial_number, candidate.id):
                raise DuplicateSerialError(
                    [F.error("duplicate_serial_number", trip_serial_number=candidate.trip_serial_number)],
                    candidate.trip_serial_number,
                )

        history = await vehicle_history(db, ctx.organization_id, candidate.vehicle_id, exclude_trip_id=candidate.id)
        found, values = await TripWriteOrchestrator.validate_candidate(db, ctx, candidate, history, previous)

        # Segments the trip bordered before this write
        previous_end_ids = set()
        if previous is not None and previous.deleted_at is None:
            old_history = await vehicle_history(db, ctx.organization_id, previous.vehicle_id)
            previous_end_ids = affected_end_trip_ids(build_segments(old_history), previous.id)

        if existing is None:
            trip = Trip(
                organization_id=ctx.organization_id,
                created_by=ctx.user_id,
                **{key: getattr(candidate, key) for key in WRITABLE_FIELDS},
            )
            db.add(trip)
        else:
            trip = existing
            for key in WRITABLE_FIELDS:
                setattr(trip, key, getattr(candidate, key))
            if mode == WriteMode.RESTORE:
                trip.deleted_at = None
                trip.deleted_by = None
                trip.deletion_reason = None
        try:
            await db.flush()
        except IntegrityError as exc:
            # The serial lookup above only runs under the vehicle/driver locks
            if _is_serial_violation(exc):
                raise DuplicateSerialError(
                    [F.error("duplicate_serial_number", trip_serial_number=candidate.trip_serial_number)],
                    candidate.trip_serial_number,
                ) from exc
            raise

        chain_changes = await refresh_adjacent_segments(
            db,
            ctx.organization_id,
            trip.vehicle_id,
            trip.id,
            previous_end_ids if previous is not None and previous.vehicle_id == trip.vehicle_id else (),
        )
        if previous is not None and previous.vehicle_id != trip.vehicle_id:
            chain_changes += await refresh_adjacent_segments(
                db, ctx.organization_id, previous.vehicle_id, None, previous_end_ids
            )
        await db.flush()

        if mode == WriteMode.RESTORE:
            found = found + [F.info("trip_restored", trip_serial=trip.trip_serial_number)]
        found = found + _chain_findings(chain_changes)

        changes_made: Dict[str, Any] = {"after": TripRecord.from_model(trip).snapshot()}
        if previous is not None:
            changes_made["before"] = previous.snapshot()
        if chain_changes:
            changes_made["efficiency_changes"] = chain_changes

        entry = await record_decision(
            db,
            OPERATION_BY_MODE[mode],
            trip.id,
            found,
            action_performed=f"Trip {trip.trip_serial_number} {mode.value} accepted ({values.outcome.value})",
            organization_id=ctx.organization_id,
            entity_description=trip.trip_serial_number,
            performed_by=ctx.user_id,
            user_role=ctx.role,
            changes_made=changes_made,
            reason=reason,
            tags=[mode.value, values.outcome.value] + ([values.edge_case.kind] if values.edge_case else []),
        )
        return WriteResult(
            trip=trip,
            mode=mode,
            outcome=values.outcome,
            findings=found,
            audit_entry=entry,
            chain_changes=chain_changes,
        )

    @staticmethod
    async def _delete(
        db: AsyncSession,
        ctx: WriteContext,
        trip: Trip,
        hard_delete: bool,
        reason: Optional[str],
    ) -> WriteResult:
        history = await vehicle_history(db, ctx.organization_id, trip.vehicle_id)
        before = TripRecord.from_model(trip)
        dependents = downstream_dependents(history, trip.id) if before.is_refuel else []
        previous_end_ids = affected_end_trip_ids(build_segments(history), trip.id)

        if dependents and hard_delete:
            raise DependentDataError(
                [F.error(
                    "dependent_trips",
                    trip_serial=trip.trip_serial_number,
                    dependent_count=len(dependents),
                    dependent_trip_ids=[d.id for d in dependents],
                )],
                trip.id,
                [d.id for d in dependents],
            )

        if hard_delete:
            await db.delete(trip)
            found = [F.info("trip_hard_deleted", trip_serial=trip.trip_serial_number)]
        else:
            trip.deleted_at = utc_now()
            trip.deleted_by = ctx.user_id
            trip.deletion_reason = reason
            if dependents:
                found = [F.warning(
                    "soft_deleted_with_dependents",
                    trip_serial=trip.trip_serial_number,
                    dependent_count=len(dependents),
                    dependent_trip_ids=[d.id for d in dependents],
                )]
            else:
                found = [F.info("trip_soft_deleted", trip_serial=trip.trip_serial_number)]
        await db.flush()

        chain_changes = await refresh_adjacent_segments(db, ctx.organization_id, trip.vehicle_id, None, previous_end_ids)
        await db.flush()
        found += _chain_findings(chain_changes)

        entry = await record_decision(
            db,
            AuditOperation.TRIP_DELETE,
            before.id,
            found,
            action_performed=(
                f"Trip {trip.trip_serial_number} {'permanently removed' if hard_delete else 'soft-deleted'}"
            ),
            organization_id=ctx.organization_id,
            entity_description=trip.trip_serial_number,
            performed_by=ctx.user_id,
            user_role=ctx.role,
            changes_made={
                "before": before.snapshot(),
                "hard_delete": hard_delete,
                "dependent_trip_ids": [d.id for d in dependents],
                "efficiency_changes": chain_changes,
            },
            reason=reason,
            tags=[WriteMode.DELETE.value, "hard" if hard_delete else "soft"],
        )
        outcome = ValidationOutcome.WARNING if dependents else ValidationOutcome.ACCEPTED
        return WriteResult(
            trip=trip,
            mode=WriteMode.DELETE,
            outcome=outcome,
            findings=found,
            audit_entry=entry,
            chain_changes=chain_changes,
        )

    @staticmethod
    async def _record_rejection(
        db: AsyncSession,
        ctx: WriteContext,
        mode: WriteMode,
        candidate: TripRecord,
        exc: TripValidationError,
        reason: Optional[str],
    ) -> None:
        severity = F.worst_severity(exc.findings)
        if severity.rank < AuditSeverity.ERROR.rank:
            severity = AuditSeverity.ERROR
        try:
            await record_entry(
                db,
                operation_type=AuditOperation.TRIP_REJECTED,
                operation_category=AuditCategory.DATA_VALIDATION,
                entity_type="trip",
                entity_id=candidate.id,
                action_performed=f"Trip {candidate.label} {mode.value} rejected: {exc.message}",
                organization_id=ctx.organization_id,
                entity_description=candidate.trip_serial_number,
                performed_by=ctx.user_id,
                user_role=ctx.role,
                severity=severity,
                findings=exc.findings,
                changes_made={"mode": mode.value, "candidate": candidate.snapshot()},
                reason=reason,
                tags=[mode.value, exc.error_code],
            )
            await db.commit()
        except SQLAlchemyError as audit_exc:
            await db.rollback()
            logger.error(
                "Failed to record trip rejection",
                extra={"mode": mode.value, "trip_id": candidate.id, "error": str(audit_exc)},
            )
            raise StorageError("Failed to record trip rejection", cause=audit_exc) from audit_exc

        logger.warning(
            "Trip write rejected",
            extra={
                "mode": mode.value,
                "trip_id": candidate.id,
                "organization_id": ctx.organization_id,
                "error_code": exc.error_code,
            },
        )

    # Chain-wide maintenance writes

    @staticmethod
    async def apply_odometer_correction(
        db: AsyncSession,
        ctx: WriteContext,
        trip_id: int,
        new_end_km: int,
        reason: str,
        new_start_km: Optional[int] = None,
        cascade: bool = True,
    ) -> Dict[str, Any]:
        """
        Correct one trip's odometer and shift every later trip by the same delta.

        The corrected sequence must still be continuous and the corrected trip
        must still pass value range checks; otherwise nothing is written and an
        ``error`` audit entry is recorded.
        """
        trip = await get_trip(db, ctx.organization_id, trip_id)
        if trip is None:
            raise ResourceNotFoundError("Trip", trip_id)
        vehicle_id = trip.vehicle_id
        target = TripRecord.from_model(trip)

        try:
            async with entity_locks(db, lock_keys(ctx.organization_id, vehicle_ids=[vehicle_id])):
                trips = await vehicle_trip_models(db, ctx.organization_id, vehicle_id)
                history = [TripRecord.from_model(t) for t in trips]
                plan = plan_odometer_correction(history, trip_id, new_end_km, new_start_km, cascade)
                after_by_id = {after.id: after for _, after in plan}
                proposed = [after_by_id.get(h.id, h) for h in history]

                corrected = after_by_id.get(trip_id, target)
                values = evaluate_trip_values(corrected, ctx.rules)
                if values.outcome == ValidationOutcome.REJECTED:
                    if values.is_correctness_violation:
                        raise CorrectnessViolation(values.findings)
                    raise ValueRangeViolation(values.findings)

                gaps, _ = scan_odometer_gaps(proposed, ctx.rules)
                negative = [
                    F.error(
                        "negative_odometer_gap",
                        start_km=g.next_trip.start_km,
                        neighbour_end_km=g.previous_trip.end_km,
                        neighbour_trip_id=g.previous_trip.id,
                        neighbour_serial=g.previous_trip.label,
                        gap_km=g.gap_km,
                    )
                    for g in gaps if g.gap_type == "negative"
                ]
                if negative:
                    raise CorrectnessViolation(negative)
                large = [
                    F.warning(
                        "large_odometer_gap",
                        ctx.rules.large_gap_threshold_km,
                        gap_km=g.gap_km,
                        direction="after",
                        neighbour_trip_id=g.previous_trip.id,
                        neighbour_serial=g.previous_trip.label,
                    )
                    for g in gaps if g.gap_type == "large"
                ]

                models_by_id = {t.id: t for t in trips}
                for _, after in plan:
                    model = models_by_id[after.id]
                    model.start_km = after.start_km
                    model.end_km = after.end_km
                await db.flush()

                segments, chain_changes = await recompute_vehicle_chain(db, ctx.organization_id, vehicle_id)

                delta = new_end_km - target.end_km
                found = [F.info(
                    "odometer_corrected",
                    trip_serial=target.label,
                    delta_km=delta,
                    shifted_count=max(len(plan) - 1, 0),
                )] + large + _chain_findings(chain_changes)
                affected = [
                    {
                        "trip_id": before.id,
                        "old_start_km": before.start_km,
                        "old_end_km": before.end_km,
                        "new_start_km": after.start_km,
                        "new_end_km": after.end_km,
                    }
                    for before, after in plan
                ]
                entry = await record_decision(
                    db,
                    AuditOperation.DATA_CORRECTION,
                    trip_id,
                    found,
                    action_performed=f"Odometer correction of {delta} km applied from trip {target.label}",
                    operation_category=AuditCategory.DATA_CORRECTION,
                    organization_id=ctx.organization_id,
                    entity_description=target.trip_serial_number,
                    performed_by=ctx.user_id,
                    user_role=ctx.role,
                    changes_made={
                        "odometer_delta_km": delta,
                        "cascade": cascade,
                        "affected_trips": affected,
                        "efficiency_changes": chain_changes,
                    },
                    reason=reason,
                    tags=["odometer_correction"],
                )
                await db.commit()
        except TripValidationError as exc:
            await db.rollback()
            await TripWriteOrchestrator._record_rejection(db, ctx, WriteMode.UPDATE, target, exc, reason)
            raise
        except SQLAlchemyError as exc:
            await db.rollback()
            raise StorageError(cause=exc) from exc

        await invalidate_mileage_chain(ctx.organization_id, vehicle_id)
        logger.info(
            "Odometer correction applied",
            extra={"trip_id": trip_id, "vehicle_id": vehicle_id, "delta_km": delta, "shifted": len(plan)},
        )
        return {
            "trip_id": trip_id,
            "vehicle_id": vehicle_id,
            "odometer_delta_km": delta,
            "affected_trips": affected,
            "efficiency_changes": chain_changes,
            "segments": [s.to_dict() for s in segments],
            "audit_entry_id": entry.id,
        }

    @staticmethod
    async def rebuild_mileage_chain(
        db: AsyncSession,
        ctx: WriteContext,
        vehicle_id: int,
    ) -> List[MileageSegment]:
        """
        Recompute every segment of a vehicle from scratch and persist drift.

        Idempotent: a second run on an unchanged trip set changes nothing.
        """
        if await get_vehicle(db, ctx.organization_id, vehicle_id) is None:
            raise ResourceNotFoundError("Vehicle", vehicle_id)

        try:
            async with entity_locks(db, lock_keys(ctx.organization_id, vehicle_ids=[vehicle_id])):
                segments, changes = await recompute_vehicle_chain(db, ctx.organization_id, vehicle_id)
                found = [F.info("chain_rebuilt", segment_count=len(segments), changed_count=len(changes))]
                # Drift repaired by a rebuild is worth a warning
                found += [
                    F.warning(
                        "segment_recomputed",
                        trip_id=c["trip_id"],
                        trip_serial=c["trip_serial_number"],
                        old_kmpl=c["old_kmpl"],
                        new_kmpl=c["new_kmpl"],
                    )
                    for c in changes
                ]
                await record_decision(
                    db,
                    AuditOperation.CHAIN_REBUILD,
                    vehicle_id,
                    found,
                    action_performed=f"Mileage chain rebuilt for vehicle {vehicle_id}",
                    operation_category=AuditCategory.DATA_MAINTENANCE,
                    entity_type="vehicle",
                    organization_id=ctx.organization_id,
                    performed_by=ctx.user_id,
                    user_role=ctx.role,
                    changes_made={"segment_count": len(segments), "efficiency_changes": changes},
                )
                await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise StorageError(cause=exc) from exc

        await invalidate_mileage_chain(ctx.organization_id, vehicle_id)
        logger.info(
            "Mileage chain rebuilt",
            extra={"vehicle_id": vehicle_id, "segments": len(segments), "changed": len(changes)},
        )
        return segments
