from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta, timezone
import logging
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.exceptions import (
    AppError,
    NoCandidateAvailableError,
    OfferAlreadyResolvedError,
    OverrideConflictError,
    ResourceNotFoundError,
    SlotInvariantError,
)
from app.models.absence_event import AbsenceEvent, AbsenceStatus, DayPortion, LeaveType
from app.models.replacement_offer import ReplacementOffer, ReplacementOfferStatus
from app.models.replacement_workflow import (
    TERMINAL_WORKFLOW_STATUSES,
    ReplacementWorkflow,
    ReplacementWorkflowStatus,
)
from app.models.teacher import Teacher
from app.models.term import Term
from app.models.timetable_slot import SlotKind
from app.services.audit import log_activity
from app.services.calendar import SlotCatalog, build_catalog
from app.services.constraints import busy_reason, is_subject_eligible, subject_teachers, weekly_load
from app.services.notifications import NotificationGateway
from app.services.timetable_store import (
    SlotRef,
    apply_override,
    get_base_slot,
    get_override,
    get_teacher_effective_slots,
    remove_override,
)

logger = logging.getLogger(__name__)

BLOCKING_OFFER_STATUSES = (ReplacementOfferStatus.offered, ReplacementOfferStatus.accepted)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _workflow_ref(workflow: ReplacementWorkflow) -> SlotRef:
    return SlotRef(
        class_id=workflow.class_id,
        term_id=workflow.term_id,
        day=workflow.day,
        period=workflow.period,
    )


def _slot_summary(workflow: ReplacementWorkflow) -> dict:
    return {
        "workflow_id": workflow.id,
        "class_id": workflow.class_id,
        "term_id": workflow.term_id,
        "day": workflow.day,
        "period": workflow.period,
        "subject_id": workflow.subject_id,
        "absent_teacher_id": workflow.absent_teacher_id,
    }


class ReplacementResolver:
    """Drives one workflow per (absence, slot, date) from detection to a final cover.

    Offers are strictly sequential: a workflow never has more than one offer
    in the `offered` state. Every public method commits its own transaction.
    """

    def __init__(
        self,
        db: Session,
        *,
        notifier: NotificationGateway,
        catalog: SlotCatalog | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.db = db
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.catalog = catalog or build_catalog(self.settings)
        self.clock = clock

    @property
    def offer_window(self) -> timedelta:
        return timedelta(minutes=self.settings.replacement_offer_expiry_minutes)

    # Absence intake

    def record_absence(
        self,
        *,
        teacher_id: str,
        term_id: str,
        start_date: date,
        end_date: date,
        leave_type: LeaveType,
        day_portion: DayPortion = DayPortion.full_day,
        reason: str | None = None,
    ) -> AbsenceEvent:
        if self.db.get(Teacher, teacher_id) is None:
            raise ResourceNotFoundError("Teacher", teacher_id)
        term = self.db.get(Term, term_id)
        if term is None:
            raise ResourceNotFoundError("Term", term_id)
        if end_date < start_date:
            raise SlotInvariantError(
                "Absence end date must not be before its start date",
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )
        if day_portion != DayPortion.full_day and start_date != end_date:
            raise SlotInvariantError("Half-day absences must cover a single date")

        event = AbsenceEvent(
            teacher_id=teacher_id,
            term_id=term_id,
            start_date=start_date,
            end_date=end_date,
            leave_type=leave_type,
            day_portion=day_portion,
            reason=reason,
        )
        self.db.add(event)
        self.db.flush()
        log_activity(
            self.db,
            actor_id=teacher_id,
            action="absence.record",
            entity_type="absence_event",
            entity_id=event.id,
            details={
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "leave_type": leave_type.value,
                "day_portion": day_portion.value,
            },
        )
        self.open_absence(event)
        return event

    def open_absence(self, event: AbsenceEvent) -> list[ReplacementWorkflow]:
        """Create and start a workflow for every period the absence uncovers.

        Dated covers the teacher already holds count as well as their base
        periods.
        """
        term = self.db.get(Term, event.term_id)
        if term is None:
            raise ResourceNotFoundError("Term", event.term_id)
        if event.status != AbsenceStatus.active:
            return []

        start = max(event.start_date, term.start_date)
        end = min(event.end_date, term.end_date)
        periods = set(self.catalog.periods_for_portion(event.day_portion))
        created: list[ReplacementWorkflow] = []
        for on_date in self.catalog.working_dates(start, end):
            affected = [
                slot
                for slot in get_teacher_effective_slots(
                    self.db, event.teacher_id, event.term_id, on_date, catalog=self.catalog
                )
                if slot.kind == SlotKind.period
                and slot.subject_id
                and slot.period in periods
            ]
            for slot in affected:
                existing = self.db.execute(
                    select(ReplacementWorkflow).where(
                        ReplacementWorkflow.absence_event_id == event.id,
                        ReplacementWorkflow.class_id == slot.class_id,
                        ReplacementWorkflow.day == slot.day,
                        ReplacementWorkflow.period == slot.period,
                        ReplacementWorkflow.date == on_date,
                    )
                ).scalar_one_or_none()
                if existing is not None:
                    continue
                workflow = ReplacementWorkflow(
                    absence_event_id=event.id,
                    class_id=slot.class_id,
                    term_id=slot.term_id,
                    day=slot.day,
                    period=slot.period,
                    date=on_date,
                    subject_id=slot.subject_id,
                    absent_teacher_id=event.teacher_id,
                    status=ReplacementWorkflowStatus.detected,
                )
                self.db.add(workflow)
                self.db.flush()
                created.append(workflow)
                self._advance(workflow)

        self.db.commit()
        logger.info(
            "Opened %s replacement workflows for absence %s (teacher %s)",
            len(created),
            event.id,
            event.teacher_id,
        )
        return created

    # Candidate selection

    def rank_candidates(self, workflow: ReplacementWorkflow) -> list[tuple[int, str]]:
        """Eligible substitutes as (weekly load, teacher id), best first."""
        offered_here = set(
            self.db.execute(
                select(ReplacementOffer.candidate_teacher_id).where(ReplacementOffer.workflow_id == workflow.id)
            ).scalars()
        )
        engaged_elsewhere = set(
            self.db.execute(
                select(ReplacementOffer.candidate_teacher_id).where(
                    ReplacementOffer.date == workflow.date,
                    ReplacementOffer.period == workflow.period,
                    ReplacementOffer.workflow_id != workflow.id,
                    ReplacementOffer.status.in_(BLOCKING_OFFER_STATUSES),
                )
            ).scalars()
        )
        assigned = subject_teachers(self.db, workflow.term_id, workflow.subject_id)
        teachers = self.db.execute(
            select(Teacher)
            .where(Teacher.is_active.is_(True), Teacher.id != workflow.absent_teacher_id)
            .order_by(Teacher.id)
        ).scalars()

        ranked: list[tuple[int, str]] = []
        for teacher in teachers:
            if teacher.id in offered_here or teacher.id in engaged_elsewhere:
                continue
            if not is_subject_eligible(teacher, workflow.subject_id, assigned):
                continue
            reason = busy_reason(
                self.db,
                teacher_id=teacher.id,
                term_id=workflow.term_id,
                on_date=workflow.date,
                period=workflow.period,
                catalog=self.catalog,
            )
            if reason is not None:
                continue
            load = weekly_load(self.db, teacher_id=teacher.id, term_id=workflow.term_id, on_date=workflow.date)
            ranked.append((load, teacher.id))
        ranked.sort()
        return ranked

    def _next_candidate(self, workflow: ReplacementWorkflow) -> str:
        ranked = self.rank_candidates(workflow)
        if not ranked:
            raise NoCandidateAvailableError(
                f"No substitute available for {workflow.day} period {workflow.period} on {workflow.date.isoformat()}",
                details=_slot_summary(workflow),
            )
        return ranked[0][1]

    def _advance(self, workflow: ReplacementWorkflow, now: datetime | None = None) -> ReplacementOffer | None:
        if workflow.status in TERMINAL_WORKFLOW_STATUSES:
            return None
        try:
            candidate_id = self._next_candidate(workflow)
        except NoCandidateAvailableError:
            self._mark_unfilled(workflow, "no_eligible_candidate")
            return None

        now = now or self.clock()
        attempt = len(
            self.db.execute(
                select(ReplacementOffer.id).where(ReplacementOffer.workflow_id == workflow.id)
            ).all()
        )
        offer = ReplacementOffer(
            workflow_id=workflow.id,
            class_id=workflow.class_id,
            term_id=workflow.term_id,
            day=workflow.day,
            period=workflow.period,
            date=workflow.date,
            candidate_teacher_id=candidate_id,
            rank=attempt + 1,
            status=ReplacementOfferStatus.offered,
            offered_at=now,
            expires_at=now + self.offer_window,
        )
        self.db.add(offer)
        workflow.status = ReplacementWorkflowStatus.offering
        self.db.flush()
        self.notifier.notify(
            candidate_id,
            {
                "event": "offer.created",
                "offer_id": offer.id,
                **_slot_summary(workflow),
                "date": workflow.date.isoformat(),
                "expires_at": offer.expires_at.isoformat(),
            },
        )
        logger.info(
            "Offered %s %s period %s on %s to %s (attempt %s)",
            workflow.class_id,
            workflow.day,
            workflow.period,
            workflow.date.isoformat(),
            candidate_id,
            offer.rank,
        )
        return offer

    def _mark_unfilled(self, workflow: ReplacementWorkflow, reason: str) -> None:
        workflow.status = ReplacementWorkflowStatus.unfilled
        workflow.unfilled_reason = reason
        if workflow.alerted_at is None:
            workflow.alerted_at = self.clock()
            self.notifier.alert(
                self.settings.admin_alert_recipient_id,
                _slot_summary(workflow),
                workflow.date,
                reason,
            )
        self.db.flush()
        log_activity(
            self.db,
            actor_id=None,
            action="replacement.unfilled",
            entity_type="replacement_workflow",
            entity_id=workflow.id,
            details={"reason": reason, "date": workflow.date.isoformat()},
        )

    # Offer responses

    def _get_offer(self, offer_id: str) -> ReplacementOffer:
        offer = self.db.get(ReplacementOffer, offer_id)
        if offer is None:
            raise ResourceNotFoundError("Offer", offer_id)
        return offer

    def _get_workflow(self, workflow_id: str) -> ReplacementWorkflow:
        workflow = self.db.get(ReplacementWorkflow, workflow_id)
        if workflow is None:
            raise ResourceNotFoundError("Workflow", workflow_id)
        return workflow

    def _compare_and_set(self, offer: ReplacementOffer, target: ReplacementOfferStatus, **values) -> bool:
        result = self.db.execute(
            update(ReplacementOffer)
            .where(
                ReplacementOffer.id == offer.id,
                ReplacementOffer.status == ReplacementOfferStatus.offered,
            )
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.db.refresh(offer)
        return True

    def _check_responder(self, offer: ReplacementOffer, teacher_id: str | None) -> None:
        if teacher_id is not None and teacher_id != offer.candidate_teacher_id:
            raise AppError(
                "Offer belongs to a different teacher",
                status_code=403,
                details={"offer_id": offer.id},
            )

    def _is_expired(self, offer: ReplacementOffer, now: datetime) -> bool:
        expires_at = _as_utc(offer.expires_at)
        return expires_at is not None and expires_at <= now

    def _reject_if_expired(self, offer: ReplacementOffer, now: datetime) -> None:
        """A response after the window closes expires the offer and moves on."""
        if not self._is_expired(offer, now):
            return
        if self._compare_and_set(offer, ReplacementOfferStatus.expired, responded_at=now):
            self._advance(self._get_workflow(offer.workflow_id))
            self.db.commit()
        raise OfferAlreadyResolvedError(offer.id, ReplacementOfferStatus.expired.value)

    def accept_offer(self, offer_id: str, *, teacher_id: str | None = None) -> ReplacementOffer:
        offer = self._get_offer(offer_id)
        self._check_responder(offer, teacher_id)
        if offer.status != ReplacementOfferStatus.offered:
            raise OfferAlreadyResolvedError(offer.id, offer.status.value)

        now = self.clock()
        self._reject_if_expired(offer, now)

        if not self._compare_and_set(offer, ReplacementOfferStatus.accepted, responded_at=now):
            self.db.rollback()
            current = self.db.get(ReplacementOffer, offer_id)
            raise OfferAlreadyResolvedError(offer_id, current.status.value if current else None)

        workflow = self._get_workflow(offer.workflow_id)
        ref = _workflow_ref(workflow)
        held = get_override(self.db, ref, workflow.date)
        if held is not None and held.teacher_id == workflow.absent_teacher_id:
            remove_override(self.db, ref, workflow.date)
        try:
            apply_override(
                self.db,
                ref,
                workflow.date,
                offer.candidate_teacher_id,
                catalog=self.catalog,
            )
        except OverrideConflictError:
            offer.status = ReplacementOfferStatus.cancelled
            self._mark_unfilled(workflow, "override_conflict")
            self.db.commit()
            raise

        workflow.status = ReplacementWorkflowStatus.accepted
        workflow.assigned_teacher_id = offer.candidate_teacher_id
        log_activity(
            self.db,
            actor_id=offer.candidate_teacher_id,
            action="replacement.offer.accept",
            entity_type="replacement_offer",
            entity_id=offer.id,
            details={"workflow_id": workflow.id, "date": workflow.date.isoformat()},
        )
        self.db.commit()
        self.db.refresh(offer)
        logger.info("Offer %s accepted by %s", offer.id, offer.candidate_teacher_id)
        return offer

    def decline_offer(
        self,
        offer_id: str,
        *,
        reason: str | None = None,
        teacher_id: str | None = None,
    ) -> ReplacementOffer:
        offer = self._get_offer(offer_id)
        self._check_responder(offer, teacher_id)
        if offer.status != ReplacementOfferStatus.offered:
            raise OfferAlreadyResolvedError(offer.id, offer.status.value)

        now = self.clock()
        self._reject_if_expired(offer, now)

        cleaned = reason.strip() if reason and reason.strip() else None
        if not self._compare_and_set(
            offer,
            ReplacementOfferStatus.declined,
            responded_at=now,
            decline_reason=cleaned,
        ):
            self.db.rollback()
            current = self.db.get(ReplacementOffer, offer_id)
            raise OfferAlreadyResolvedError(offer_id, current.status.value if current else None)

        log_activity(
            self.db,
            actor_id=offer.candidate_teacher_id,
            action="replacement.offer.decline",
            entity_type="replacement_offer",
            entity_id=offer.id,
            details={"reason": cleaned},
        )
        self._advance(self._get_workflow(offer.workflow_id))
        self.db.commit()
        self.db.refresh(offer)
        return offer

    def expire_stale_offers(self, now: datetime | None = None) -> int:
        now = _as_utc(now) if now is not None else self.clock()
        pending = self.db.execute(
            select(ReplacementOffer)
            .where(ReplacementOffer.status == ReplacementOfferStatus.offered)
            .order_by(ReplacementOffer.offered_at, ReplacementOffer.id)
        ).scalars().all()

        expired = 0
        for offer in pending:
            if not self._is_expired(offer, now):
                continue
            if not self._compare_and_set(offer, ReplacementOfferStatus.expired, responded_at=now):
                continue
            expired += 1
            workflow = self._get_workflow(offer.workflow_id)
            self.notifier.notify(
                offer.candidate_teacher_id,
                {"event": "offer.expired", "offer_id": offer.id, **_slot_summary(workflow), "date": workflow.date.isoformat()},
            )
            self._advance(workflow, now)
        if expired:
            logger.info("Expired %s stale replacement offers", expired)
        self.db.commit()
        return expired

    # Cancellation

    def _release_cover(self, workflow: ReplacementWorkflow) -> None:
        """Undo an accepted cover and free its substitute for that slot/date.

        When the absent teacher was themselves covering the slot, their
        dated cover is put back.
        """
        ref = _workflow_ref(workflow)
        override = get_override(self.db, ref, workflow.date)
        if override is not None and override.teacher_id == workflow.assigned_teacher_id:
            remove_override(self.db, ref, workflow.date)
            base = get_base_slot(self.db, ref)
            if base is not None and base.teacher_id != workflow.absent_teacher_id:
                apply_override(self.db, ref, workflow.date, workflow.absent_teacher_id, catalog=self.catalog)

        accepted = self.db.execute(
            select(ReplacementOffer).where(
                ReplacementOffer.workflow_id == workflow.id,
                ReplacementOffer.status == ReplacementOfferStatus.accepted,
            )
        ).scalars()
        for offer in accepted:
            offer.status = ReplacementOfferStatus.cancelled
        self.db.flush()

    def cancel_absence(self, event_id: str) -> AbsenceEvent:
        event = self.db.get(AbsenceEvent, event_id)
        if event is None:
            raise ResourceNotFoundError("Absence", event_id)
        if event.status == AbsenceStatus.cancelled:
            return event

        now = self.clock()
        event.status = AbsenceStatus.cancelled
        event.cancelled_at = now
        workflows = self.db.execute(
            select(ReplacementWorkflow)
            .where(ReplacementWorkflow.absence_event_id == event.id)
            .order_by(ReplacementWorkflow.date, ReplacementWorkflow.period, ReplacementWorkflow.class_id)
        ).scalars().all()

        for workflow in workflows:
            if workflow.status == ReplacementWorkflowStatus.cancelled:
                continue
            offers = self.db.execute(
                select(ReplacementOffer).where(
                    ReplacementOffer.workflow_id == workflow.id,
                    ReplacementOffer.status == ReplacementOfferStatus.offered,
                )
            ).scalars().all()
            for offer in offers:
                if self._compare_and_set(offer, ReplacementOfferStatus.cancelled, responded_at=now):
                    self.notifier.notify(
                        offer.candidate_teacher_id,
                        {"event": "offer.cancelled", "offer_id": offer.id, **_slot_summary(workflow), "date": workflow.date.isoformat()},
                    )

            if workflow.status == ReplacementWorkflowStatus.accepted and workflow.assigned_teacher_id:
                self._release_cover(workflow)
                self.notifier.notify(
                    workflow.assigned_teacher_id,
                    {"event": "override.reverted", **_slot_summary(workflow), "date": workflow.date.isoformat()},
                )
            workflow.status = ReplacementWorkflowStatus.cancelled

        log_activity(
            self.db,
            actor_id=event.teacher_id,
            action="absence.cancel",
            entity_type="absence_event",
            entity_id=event.id,
            details={"workflows": len(workflows)},
        )
        self.db.commit()
        logger.info("Cancelled absence %s and %s replacement workflows", event.id, len(workflows))
        return event

    # Queries

    def replacement_status(self, event_id: str) -> dict:
        event = self.db.get(AbsenceEvent, event_id)
        if event is None:
            raise ResourceNotFoundError("Absence", event_id)
        workflows = self.db.execute(
            select(ReplacementWorkflow)
            .where(ReplacementWorkflow.absence_event_id == event.id)
            .order_by(ReplacementWorkflow.date, ReplacementWorkflow.period, ReplacementWorkflow.class_id)
        ).scalars().all()
        offers_by_workflow: dict[str, list[ReplacementOffer]] = {item.id: [] for item in workflows}
        if workflows:
            offers = self.db.execute(
                select(ReplacementOffer)
                .where(ReplacementOffer.workflow_id.in_(list(offers_by_workflow)))
                .order_by(ReplacementOffer.rank)
            ).scalars()
            for offer in offers:
                offers_by_workflow[offer.workflow_id].append(offer)
        counts = Counter(item.status.value for item in workflows)
        return {
            "absence": event,
            "workflows": [{"workflow": item, "offers": offers_by_workflow[item.id]} for item in workflows],
            "summary": {status.value: counts.get(status.value, 0) for status in ReplacementWorkflowStatus},
        }

    def offers_for_teacher(
        self,
        teacher_id: str,
        status: ReplacementOfferStatus | None = None,
    ) -> list[ReplacementOffer]:
        query = select(ReplacementOffer).where(ReplacementOffer.candidate_teacher_id == teacher_id)
        if status is not None:
            query = query.where(ReplacementOffer.status == status)
        return list(self.db.execute(query.order_by(ReplacementOffer.date, ReplacementOffer.period)).scalars())
