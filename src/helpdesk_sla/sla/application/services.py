"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (unit of work, dispatchers),
  not concrete implementations

Services:
- PolicyResolver: picks the policy governing a ticket
- TimerEngine: lifecycle hooks and the periodic sweep
- EscalationTrigger: escalation records and notifications
- SLAPolicyService: policy administration
- SLAReportingService: timer/breach listings and statistics
"""

import asyncio
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from helpdesk_sla.config import (
    RiskLevel, SLAMetric, TicketStatus, TimerStatus, WebhookEvent,
    TERMINAL_STATUSES, VALID_METRICS, ESCALATION_LEVELS
)
from helpdesk_sla.core import (
    ConcurrentTransitionConflict,
    ConfigurationException,
    DispatchFailure,
    InvalidTimerTransitionException,
    PolicyInUseException,
    ResourceNotFoundException,
)
from helpdesk_sla.sla.application.interfaces import (
    ISLAPolicyRepository,
    ISLAUnitOfWork,
    INotificationDispatcher,
    IWebhookDispatcher,
)
from helpdesk_sla.sla.domain import (
    BusinessCalendar, SLACalculator, TicketSnapshot,
    SLAPolicy, SLATimer, SLABreach, SLAEscalation, TimerView
)
from helpdesk_sla.sla.domain.calendar import ensure_utc
from helpdesk_sla.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

UnitOfWorkFactory = Callable[[], ISLAUnitOfWork]
Clock = Callable[[], datetime]

MANUAL_PAUSE_REASON = "Manual pause"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_minutes(minutes: float) -> str:
    """Human-readable duration, e.g. ``2h 15m``."""
    total = int(round(abs(minutes)))
    hours, mins = divmod(total, 60)
    text = f"{hours}h {mins}m" if hours else f"{mins}m"
    return f"-{text}" if minutes < 0 else text


# ========== Policy Resolution ==========

class PolicyResolver:
    """
    Selects the policy that governs a ticket.

    Scoped policies (department or category lists) are considered first,
    highest ``priority`` wins and ties go to the most recently created.
    Without a scoped match the active default applies.
    """

    def __init__(self, policy_repository: ISLAPolicyRepository):
        self._policies = policy_repository

    async def resolve(self, ticket: TicketSnapshot) -> Optional[SLAPolicy]:
        policies = await self._policies.list(active_only=True)
        return self.select(policies, ticket)

    @staticmethod
    def select(policies: Iterable[SLAPolicy], ticket: TicketSnapshot) -> Optional[SLAPolicy]:
        active = [p for p in policies if p.is_active]

        scoped = [p for p in active if p.is_scoped and p.matches_scope(ticket)]
        if scoped:
            epoch = datetime.min.replace(tzinfo=timezone.utc)
            return max(
                scoped,
                key=lambda p: (p.priority, ensure_utc(p.created_at) if p.created_at else epoch)
            )

        for policy in active:
            if policy.is_default:
                return policy
        return None


# ========== Escalation ==========

class EscalationTrigger:
    """
    Turns a timer's risk level into escalation records and notifications.

    Every newly crossed level gets exactly one SLAEscalation row, but only
    the most severe new level is announced. At-risk notifications for the
    same ticket and metric are rate limited; breaches always go out.
    Dispatch happens after the records are committed and its failures
    never undo them.
    """

    def __init__(
        self,
        notifier: Optional[INotificationDispatcher] = None,
        webhooks: Optional[IWebhookDispatcher] = None,
        min_interval_minutes: int = 60,
        admin_user_ids: Sequence[str] = ()
    ):
        self._notifier = notifier
        self._webhooks = webhooks
        self._min_interval = timedelta(minutes=min_interval_minutes)
        self._admin_user_ids = list(admin_user_ids)

    async def check_and_fire(
        self,
        uow: ISLAUnitOfWork,
        timer: SLATimer,
        ticket: Optional[TicketSnapshot],
        now: datetime
    ) -> List[SLAEscalation]:
        """
        Record escalations for the levels the timer has newly crossed.

        Commits the unit of work before dispatching.

        Returns:
            The escalation records created by this call
        """
        if timer.risk_level == RiskLevel.NONE:
            return []

        now = ensure_utc(now)
        recorded = await uow.escalations.levels_for_timer(timer.id)
        new_levels = [
            level for level in SLACalculator.crossed_levels(timer.risk_level)
            if level not in recorded
        ]
        if not new_levels:
            return []

        top = new_levels[-1]
        notify, suppressed_reason = await self._should_notify(uow, timer, top, now)

        created = []
        for level in new_levels:
            if level == top:
                reason = self._describe(timer, level) if notify else suppressed_reason
            else:
                reason = f"Superseded by {top}"

            escalation = await uow.escalations.add_if_absent(SLAEscalation(
                id=str(uuid4()),
                timer_id=timer.id,
                ticket_id=timer.ticket_id,
                metric=timer.metric,
                level=level,
                escalated_at=now,
                remaining_minutes=timer.remaining_minutes,
                notified=notify and level == top,
                reason=reason
            ))
            if escalation is not None:
                created.append(escalation)

        await uow.commit()

        for escalation in created:
            logger.info(
                "SLA escalation recorded",
                extra={
                    "ticket_id": escalation.ticket_id,
                    "timer_id": escalation.timer_id,
                    "metric": escalation.metric,
                    "level": escalation.level,
                    "notified": escalation.notified,
                }
            )
            if escalation.notified:
                await self._dispatch(escalation, timer, ticket)

        return created

    async def _should_notify(
        self,
        uow: ISLAUnitOfWork,
        timer: SLATimer,
        level: str,
        now: datetime
    ) -> tuple:
        if level == RiskLevel.BREACHED:
            return True, None

        last = await uow.escalations.last_notified_at(timer.ticket_id, timer.metric)
        if last is not None and now - ensure_utc(last) < self._min_interval:
            minutes = int(self._min_interval.total_seconds() // 60)
            return False, f"Notification suppressed: already notified within {minutes} minutes"
        return True, None

    @staticmethod
    def _describe(timer: SLATimer, level: str) -> str:
        if level == RiskLevel.BREACHED:
            overshoot = max(0.0, -timer.remaining_minutes)
            return f"SLA {timer.metric} time breached by {format_minutes(overshoot)}"
        pct = SLACalculator.percentage_elapsed(timer.elapsed_working_minutes, timer.target_minutes)
        return (
            f"{timer.metric.capitalize()} timer at {pct:.0f}% of target, "
            f"{format_minutes(timer.remaining_minutes)} remaining"
        )

    def recipients(self, ticket: Optional[TicketSnapshot], level: str) -> List[str]:
        """Assignee if any (admins when unassigned); breaches also go to admins."""
        assignee = ticket.assignee_id if ticket is not None else None
        users = [assignee] if assignee else list(self._admin_user_ids)
        if level == RiskLevel.BREACHED:
            users.extend(self._admin_user_ids)

        seen = set()
        return [u for u in users if not (u in seen or seen.add(u))]

    def build_payload(
        self,
        escalation: SLAEscalation,
        timer: SLATimer,
        ticket: Optional[TicketSnapshot]
    ) -> Dict[str, Any]:
        breached = escalation.level == RiskLevel.BREACHED
        if breached:
            title = f"SLA Breach: {timer.metric} time exceeded"
        elif escalation.level == RiskLevel.LEVEL2:
            title = f"SLA Critical: {timer.metric} deadline approaching"
        else:
            title = f"SLA Warning: {timer.metric} deadline approaching"

        return {
            "type": "sla_breach" if breached else "sla_risk",
            "title": title,
            "message": escalation.reason,
            "ticket_id": timer.ticket_id,
            "ticket_subject": ticket.subject if ticket is not None else None,
            "priority": ticket.priority if ticket is not None else timer.initial_priority,
            "timer_id": timer.id,
            "metric": timer.metric,
            "level": escalation.level,
            "target_minutes": timer.target_minutes,
            "elapsed_minutes": round(timer.elapsed_working_minutes, 2),
            "remaining_minutes": round(timer.remaining_minutes, 2),
            "escalated_at": escalation.escalated_at.isoformat(),
            "link": f"/tickets/{timer.ticket_id}",
        }

    async def _dispatch(
        self,
        escalation: SLAEscalation,
        timer: SLATimer,
        ticket: Optional[TicketSnapshot]
    ) -> None:
        payload = self.build_payload(escalation, timer, ticket)

        if self._notifier is not None:
            for user_id in self.recipients(ticket, escalation.level):
                try:
                    await self._notifier.notify(user_id, payload)
                except Exception as e:
                    self._log_failure(DispatchFailure("notification", str(e)), escalation, user_id=user_id)

        if self._webhooks is not None:
            event = WebhookEvent.BREACHED if escalation.level == RiskLevel.BREACHED else WebhookEvent.AT_RISK
            try:
                await self._webhooks.trigger(event, payload)
            except Exception as e:
                self._log_failure(DispatchFailure("webhook", str(e)), escalation, event=event)

    @staticmethod
    def _log_failure(failure: DispatchFailure, escalation: SLAEscalation, **context: Any) -> None:
        logger.error(
            failure.message,
            extra={
                "ticket_id": escalation.ticket_id,
                "timer_id": escalation.timer_id,
                "level": escalation.level,
                **context,
            }
        )


# ========== Timer Engine ==========

@dataclass
class TimerOutcome:
    """What one sweep step did to one timer."""

    timer_id: str
    recomputed: bool = False
    cancelled: bool = False
    breach_created: bool = False
    escalations: List[SLAEscalation] = field(default_factory=list)


@dataclass
class SweepReport:
    """Summary of one sweep run."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    timers_checked: int = 0
    recomputed: int = 0
    cancelled: int = 0
    breaches_created: int = 0
    escalations_created: int = 0
    notifications_sent: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)

    def record(self, outcome: TimerOutcome) -> None:
        self.recomputed += int(outcome.recomputed)
        self.cancelled += int(outcome.cancelled)
        self.breaches_created += int(outcome.breach_created)
        self.escalations_created += len(outcome.escalations)
        self.notifications_sent += sum(1 for e in outcome.escalations if e.notified)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "timers_checked": self.timers_checked,
            "recomputed": self.recomputed,
            "cancelled": self.cancelled,
            "breaches_created": self.breaches_created,
            "escalations_created": self.escalations_created,
            "notifications_sent": self.notifications_sent,
            "failures": list(self.failures),
        }


class TimerEngine:
    """
    Keeps SLA timers in step with the ticket lifecycle.

    Lifecycle hooks are called by the ticket-workflow layer; ``sweep`` is
    run periodically by the scheduler. Each timer transition is persisted
    with an optimistic status/version check so concurrent hooks and sweeps
    cannot both win.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        escalation_trigger: Optional[EscalationTrigger] = None,
        clock: Optional[Clock] = None,
        sweep_concurrency: int = 1
    ):
        self._uow_factory = uow_factory
        self._escalation = escalation_trigger
        self._clock = clock or utc_now
        self._sweep_concurrency = max(1, sweep_concurrency)

    def _now(self, at: Optional[datetime] = None) -> datetime:
        return ensure_utc(at) if at is not None else ensure_utc(self._clock())

    # ---------- Lifecycle hooks ----------

    async def on_ticket_created(
        self,
        ticket: TicketSnapshot,
        at: Optional[datetime] = None
    ) -> List[SLATimer]:
        """
        Start response and resolution timers for a new ticket.

        Idempotent: a ticket that already has active timers gets no new ones.

        Returns:
            The ticket's active timers
        """
        started_at = self._now(at) if at is not None else ensure_utc(ticket.created_at)

        async with self._uow_factory() as uow:
            await uow.tickets.save(ticket)

            existing = await uow.timers.list_for_ticket(ticket.id, active_only=True)
            if existing:
                await uow.commit()
                logger.debug("Timers already exist for ticket", extra={"ticket_id": ticket.id})
                return existing

            if ticket.is_terminal:
                await uow.commit()
                logger.info(
                    "Ticket created in a terminal status, no timers started",
                    extra={"ticket_id": ticket.id, "status": ticket.status}
                )
                return []

            policy = await PolicyResolver(uow.policies).resolve(ticket)
            if policy is None:
                await uow.commit()
                error = ConfigurationException(
                    "No active SLA policy covers the ticket",
                    {"ticket_id": ticket.id}
                )
                logger.warning(error.message, extra={"ticket_id": ticket.id})
                return []

            timers = []
            for metric in VALID_METRICS:
                timer = await self._start_timer(uow, ticket, policy, metric, started_at)
                if timer is not None:
                    timers.append(timer)

            await uow.commit()

        logger.info(
            "SLA timers started",
            extra={
                "ticket_id": ticket.id,
                "policy_id": policy.id,
                "metrics": [t.metric for t in timers],
            }
        )
        return timers

    async def on_first_response(
        self,
        ticket_id: str,
        at: Optional[datetime] = None
    ) -> Optional[SLATimer]:
        """Complete the ticket's active response timer, if any."""
        now = self._now(at)

        async with self._uow_factory() as uow:
            timers = await uow.timers.list_for_ticket(
                ticket_id, active_only=True, metric=SLAMetric.RESPONSE
            )
            completed = None
            for timer in timers:
                completed = await self._complete(uow, timer, now) or completed
            await uow.commit()

        if completed is not None:
            logger.info(
                "Response SLA completed",
                extra={
                    "ticket_id": ticket_id,
                    "elapsed_minutes": round(completed.elapsed_working_minutes, 2),
                    "breached": completed.breached_at is not None,
                }
            )
        return completed

    async def on_status_changed(
        self,
        ticket: TicketSnapshot,
        old_status: str,
        new_status: str,
        at: Optional[datetime] = None
    ) -> List[SLATimer]:
        """
        React to a ticket status change.

        - resolved/closed: complete the resolution timer and any active
          response timer
        - reopened: start a fresh resolution timer if none is active
        - any non-terminal status: pause or resume the already active
          timers according to the policy

        Returns:
            Timers changed or created by this call
        """
        now = self._now(at)
        ticket = dataclasses.replace(ticket, status=new_status)
        changed: List[SLATimer] = []

        async with self._uow_factory() as uow:
            await uow.tickets.save(ticket)
            active = await uow.timers.list_for_ticket(ticket.id, active_only=True)

            if new_status in TERMINAL_STATUSES:
                for timer in active:
                    done = await self._complete(uow, timer, now)
                    if done is not None:
                        changed.append(done)

            else:
                if new_status == TicketStatus.REOPENED or old_status in TERMINAL_STATUSES:
                    if any(t.metric == SLAMetric.RESOLUTION for t in active):
                        logger.info("Resolution timer still active on reopen", extra={"ticket_id": ticket.id})
                    else:
                        policy = await PolicyResolver(uow.policies).resolve(ticket)
                        if policy is None:
                            logger.warning(
                                "No active SLA policy covers the reopened ticket",
                                extra={"ticket_id": ticket.id}
                            )
                        else:
                            timer = await self._start_timer(uow, ticket, policy, SLAMetric.RESOLUTION, now)
                            if timer is not None:
                                changed.append(timer)

                # Timers that were already active follow the new status
                changed.extend(await self._sync_pause_state(uow, active, new_status, now))

            await uow.commit()

        logger.info(
            "Ticket status change applied",
            extra={
                "ticket_id": ticket.id,
                "old_status": old_status,
                "new_status": new_status,
                "timers_changed": len(changed),
            }
        )
        return changed

    async def _sync_pause_state(
        self,
        uow: ISLAUnitOfWork,
        timers: List[SLATimer],
        status: str,
        now: datetime
    ) -> List[SLATimer]:
        """Pause or resume timers so they match what the ticket status implies."""
        changed = []
        for timer in timers:
            policy = await uow.policies.get(timer.policy_id)
            if policy is None:
                continue
            reason = policy.pause_reason_for(status)
            if reason and timer.status == TimerStatus.RUNNING:
                result = await self._transition(
                    uow, timer, policy, now, lambda t, cal: t.pause(now, reason)
                )
            elif (
                not reason
                and timer.status == TimerStatus.PAUSED
                and timer.pause_reason != MANUAL_PAUSE_REASON
            ):
                result = await self._transition(
                    uow, timer, policy, now, lambda t, cal: t.resume(now, cal)
                )
            else:
                result = None
            if result is not None:
                changed.append(result)
        return changed

    async def on_ticket_assigned(self, ticket: TicketSnapshot) -> None:
        """Record the new assignee for escalation routing."""
        async with self._uow_factory() as uow:
            await uow.tickets.save(ticket)
            await uow.commit()
        logger.info("Ticket assignment recorded", extra={"ticket_id": ticket.id, "assignee_id": ticket.assignee_id})

    async def on_ticket_deleted(self, ticket_id: str, at: Optional[datetime] = None) -> List[SLATimer]:
        """Cancel every active timer of a deleted ticket."""
        return await self._cancel_all(ticket_id, self._now(at), "ticket deleted")

    async def pause_ticket(
        self,
        ticket_id: str,
        reason: Optional[str] = None,
        at: Optional[datetime] = None
    ) -> List[SLATimer]:
        """Manually pause all running timers of a ticket."""
        now = self._now(at)
        reason = reason or MANUAL_PAUSE_REASON
        return await self._apply_to_active(
            ticket_id, None, now,
            lambda t: t.status == TimerStatus.RUNNING,
            lambda t, cal: t.pause(now, reason)
        )

    async def resume_ticket(self, ticket_id: str, at: Optional[datetime] = None) -> List[SLATimer]:
        """Resume all paused timers of a ticket."""
        now = self._now(at)
        return await self._apply_to_active(
            ticket_id, None, now,
            lambda t: t.status == TimerStatus.PAUSED,
            lambda t, cal: t.resume(now, cal)
        )

    async def stop_timers(
        self,
        ticket_id: str,
        metric: Optional[str] = None,
        at: Optional[datetime] = None
    ) -> List[SLATimer]:
        """Complete active timers of a ticket, optionally only one metric."""
        now = self._now(at)
        async with self._uow_factory() as uow:
            timers = await uow.timers.list_for_ticket(ticket_id, active_only=True, metric=metric)
            stopped = []
            for timer in timers:
                done = await self._complete(uow, timer, now)
                if done is not None:
                    stopped.append(done)
            await uow.commit()
        return stopped

    # ---------- Queries ----------

    async def get_timer_status(
        self,
        ticket_id: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Optional[TimerView]]:
        """Current view of the latest response and resolution timers of a ticket."""
        now = self._now(now)
        status: Dict[str, Optional[TimerView]] = {metric: None for metric in VALID_METRICS}

        async with self._uow_factory() as uow:
            timers = await uow.timers.list_for_ticket(ticket_id)
            for timer in timers:
                if status.get(timer.metric) is not None:
                    continue
                policy = await uow.policies.get(timer.policy_id)
                status[timer.metric] = SLACalculator.build_view(timer, policy, now)

        return status

    # ---------- Sweep ----------

    async def sweep(self, now: Optional[datetime] = None, trigger: str = "manual") -> SweepReport:
        """
        Recompute every running timer, record breaches and escalate.

        Paused timers are only checked for cancellation; their clock is
        stopped so there is nothing to recompute.

        Each timer is handled in its own unit of work; a failure is
        recorded in the report and does not stop the sweep.
        """
        now = self._now(now)
        report = SweepReport(started_at=now)

        with log_latency(logger, "sla_sweep", trigger=trigger):
            async with self._uow_factory() as uow:
                timer_ids = await uow.timers.list_active_ids()
            report.timers_checked = len(timer_ids)

            semaphore = asyncio.Semaphore(self._sweep_concurrency)

            async def run(timer_id: str) -> None:
                async with semaphore:
                    try:
                        report.record(await self._sweep_timer(timer_id, now))
                    except Exception as e:
                        logger.error(
                            "SLA sweep failed for timer",
                            extra={"timer_id": timer_id, "error": str(e)},
                            exc_info=True
                        )
                        report.failures.append({"timer_id": timer_id, "error": str(e)})

            await asyncio.gather(*(run(timer_id) for timer_id in timer_ids))

        report.finished_at = self._now()
        logger.info(
            "SLA sweep finished",
            extra={
                "trigger": trigger,
                **{k: v for k, v in report.to_dict().items() if k not in ("failures", "started_at", "finished_at")}
            }
        )
        return report

    async def _sweep_timer(self, timer_id: str, now: datetime) -> TimerOutcome:
        outcome = TimerOutcome(timer_id=timer_id)

        async with self._uow_factory() as uow:
            timer = await uow.timers.get(timer_id)
            if timer is None or timer.is_terminal:
                return outcome

            policy = await uow.policies.get(timer.policy_id)
            ticket = await uow.tickets.get_ticket(timer.ticket_id)

            if not self._still_governs(policy, ticket):
                cancelled = await self._transition(
                    uow, timer, policy, now, lambda t, cal: t.cancel(now, cal)
                )
                await uow.commit()
                if cancelled is not None:
                    outcome.cancelled = True
                    logger.info(
                        "SLA timer cancelled, policy no longer applies",
                        extra={"timer_id": timer_id, "ticket_id": timer.ticket_id, "policy_id": timer.policy_id}
                    )
                return outcome

            if timer.is_paused:
                return outcome

            computation = SLACalculator.compute(timer, policy, now)
            SLACalculator.apply(timer, computation)
            if not await uow.timers.save_computation(timer):
                return outcome
            outcome.recomputed = True

            if computation.is_breached:
                breach = await self._record_breach(uow, timer, ticket)
                outcome.breach_created = breach is not None

            await uow.commit()

        if self._escalation is not None and timer.risk_level != RiskLevel.NONE:
            async with self._uow_factory() as uow:
                outcome.escalations = await self._escalation.check_and_fire(uow, timer, ticket, now)

        return outcome

    @staticmethod
    def _still_governs(policy: Optional[SLAPolicy], ticket: Optional[TicketSnapshot]) -> bool:
        if policy is None or not policy.is_active:
            return False
        if ticket is not None and policy.is_scoped and not policy.is_default:
            return policy.matches_scope(ticket)
        return True

    # ---------- Internals ----------

    async def _start_timer(
        self,
        uow: ISLAUnitOfWork,
        ticket: TicketSnapshot,
        policy: SLAPolicy,
        metric: str,
        started_at: datetime
    ) -> Optional[SLATimer]:
        target = policy.target_minutes(ticket.priority, metric)
        if target is None:
            logger.info(
                "No SLA target configured, timer skipped",
                extra={"ticket_id": ticket.id, "policy_id": policy.id, "metric": metric, "priority": ticket.priority}
            )
            return None

        timer = SLATimer(
            id=str(uuid4()),
            ticket_id=ticket.id,
            policy_id=policy.id,
            metric=metric,
            started_at=started_at,
            target_minutes=target,
            initial_priority=ticket.priority,
            calendar_snapshot=policy.clock_calendar().to_snapshot()
        )
        reason = policy.pause_reason_for(ticket.status)
        if reason:
            timer.pause(started_at, reason)

        return await uow.timers.add(timer)

    async def _complete(self, uow: ISLAUnitOfWork, timer: SLATimer, now: datetime) -> Optional[SLATimer]:
        policy = await uow.policies.get(timer.policy_id)
        done = await self._transition(uow, timer, policy, now, lambda t, cal: t.complete(now, cal))
        if done is not None and done.breached_at is not None:
            ticket = await uow.tickets.get_ticket(done.ticket_id)
            await self._record_breach(uow, done, ticket)
        return done

    async def _cancel_all(self, ticket_id: str, now: datetime, why: str) -> List[SLATimer]:
        async with self._uow_factory() as uow:
            timers = await uow.timers.list_for_ticket(ticket_id, active_only=True)
            cancelled = []
            for timer in timers:
                policy = await uow.policies.get(timer.policy_id)
                done = await self._transition(uow, timer, policy, now, lambda t, cal: t.cancel(now, cal))
                if done is not None:
                    cancelled.append(done)
            await uow.commit()

        logger.info("SLA timers cancelled", extra={"ticket_id": ticket_id, "reason": why, "count": len(cancelled)})
        return cancelled

    async def _apply_to_active(
        self,
        ticket_id: str,
        metric: Optional[str],
        now: datetime,
        applies: Callable[[SLATimer], bool],
        action: Callable[[SLATimer, BusinessCalendar], None]
    ) -> List[SLATimer]:
        async with self._uow_factory() as uow:
            timers = await uow.timers.list_for_ticket(ticket_id, active_only=True, metric=metric)
            changed = []
            for timer in timers:
                if not applies(timer):
                    continue
                policy = await uow.policies.get(timer.policy_id)
                result = await self._transition(uow, timer, policy, now, action)
                if result is not None:
                    changed.append(result)
            await uow.commit()
        return changed

    async def _transition(
        self,
        uow: ISLAUnitOfWork,
        timer: SLATimer,
        policy: Optional[SLAPolicy],
        now: datetime,
        action: Callable[[SLATimer, BusinessCalendar], None]
    ) -> Optional[SLATimer]:
        """
        Apply a state transition and persist it with an optimistic check.

        On a conflict the timer is reloaded and the transition retried
        once. Returns the updated timer, or None if the transition no
        longer applies.
        """
        for attempt in range(2):
            calendar = timer.clock_calendar(policy)
            expected_status, expected_version = timer.status, timer.version
            try:
                action(timer, calendar)
            except InvalidTimerTransitionException as e:
                logger.info(e.message, extra=e.details)
                return None

            if timer.is_terminal and policy is not None:
                SLACalculator.apply(timer, SLACalculator.compute(timer, policy, now, calendar))

            try:
                await uow.timers.transition(timer, expected_status, expected_version)
                return timer
            except ConcurrentTransitionConflict as e:
                if attempt:
                    logger.warning("Timer transition skipped after conflict", extra={"timer_id": e.timer_id})
                    return None
                reloaded = await uow.timers.get(timer.id)
                if reloaded is None:
                    return None
                timer = reloaded

        return None

    async def _record_breach(
        self,
        uow: ISLAUnitOfWork,
        timer: SLATimer,
        ticket: Optional[TicketSnapshot]
    ) -> Optional[SLABreach]:
        breach = await uow.breaches.add_if_absent(SLABreach(
            id=str(uuid4()),
            timer_id=timer.id,
            ticket_id=timer.ticket_id,
            policy_id=timer.policy_id,
            metric=timer.metric,
            breached_at=timer.breached_at,
            target_minutes=timer.target_minutes,
            actual_minutes=timer.elapsed_working_minutes,
            priority=ticket.priority if ticket is not None else timer.initial_priority,
            ticket_status=ticket.status if ticket is not None else None,
            department_id=ticket.department_id if ticket is not None else None,
            assignee_id=ticket.assignee_id if ticket is not None else None
        ))
        if breach is not None:
            logger.warning(
                "SLA breached",
                extra={
                    "ticket_id": breach.ticket_id,
                    "timer_id": breach.timer_id,
                    "metric": breach.metric,
                    "target_minutes": breach.target_minutes,
                    "actual_minutes": round(breach.actual_minutes, 2),
                }
            )
        return breach


# ========== Policy Administration ==========

class SLAPolicyService:
    """CRUD over SLA policies, keeping at most one default."""

    def __init__(self, uow_factory: UnitOfWorkFactory, clock: Optional[Clock] = None):
        self._uow_factory = uow_factory
        self._clock = clock or utc_now

    async def list_policies(self, active_only: bool = False) -> List[SLAPolicy]:
        async with self._uow_factory() as uow:
            return await uow.policies.list(active_only=active_only)

    async def get_policy(self, policy_id: str) -> SLAPolicy:
        async with self._uow_factory() as uow:
            policy = await uow.policies.get(policy_id)
        if policy is None:
            raise ResourceNotFoundException("SLA policy", policy_id)
        return policy

    async def active_timer_count(self, policy_id: str) -> int:
        async with self._uow_factory() as uow:
            return await uow.timers.count_active_by_policy(policy_id)

    async def create_policy(self, policy: SLAPolicy) -> SLAPolicy:
        now = ensure_utc(self._clock())
        policy = dataclasses.replace(policy, created_at=policy.created_at or now, updated_at=now)

        async with self._uow_factory() as uow:
            if policy.is_default:
                await uow.policies.clear_default(except_id=policy.id)
            created = await uow.policies.add(policy)
            await uow.commit()

        logger.info("SLA policy created", extra={"policy_id": created.id, "policy_name": created.name})
        return created

    async def update_policy(self, policy_id: str, changes: Dict[str, Any]) -> SLAPolicy:
        """Apply a partial update; the merged policy is re-validated."""
        async with self._uow_factory() as uow:
            existing = await uow.policies.get(policy_id)
            if existing is None:
                raise ResourceNotFoundException("SLA policy", policy_id)

            changes = {k: v for k, v in changes.items() if k not in ("id", "created_at")}
            updated = dataclasses.replace(existing, **changes, updated_at=ensure_utc(self._clock()))

            if updated.is_default:
                await uow.policies.clear_default(except_id=policy_id)
            updated = await uow.policies.update(updated)
            await uow.commit()

        logger.info("SLA policy updated", extra={"policy_id": policy_id, "fields": sorted(changes)})
        return updated

    async def delete_policy(self, policy_id: str) -> None:
        async with self._uow_factory() as uow:
            existing = await uow.policies.get(policy_id)
            if existing is None:
                raise ResourceNotFoundException("SLA policy", policy_id)

            active = await uow.timers.count_active_by_policy(policy_id)
            if active:
                raise PolicyInUseException(policy_id, active)

            await uow.policies.delete(policy_id)
            await uow.commit()

        logger.info("SLA policy deleted", extra={"policy_id": policy_id})

    async def sync_policies(self, policies: Sequence[SLAPolicy]) -> Dict[str, int]:
        """
        Upsert policies by name (used by the policy file loader).

        Existing policies keep their ID and creation time.
        """
        now = ensure_utc(self._clock())
        created = updated = 0

        async with self._uow_factory() as uow:
            for policy in policies:
                existing = await uow.policies.get_by_name(policy.name)
                if existing is None:
                    policy = dataclasses.replace(policy, created_at=policy.created_at or now, updated_at=now)
                    if policy.is_default:
                        await uow.policies.clear_default(except_id=policy.id)
                    await uow.policies.add(policy)
                    created += 1
                else:
                    policy = dataclasses.replace(
                        policy, id=existing.id, created_at=existing.created_at, updated_at=now
                    )
                    if policy.is_default:
                        await uow.policies.clear_default(except_id=existing.id)
                    await uow.policies.update(policy)
                    updated += 1
            await uow.commit()

        logger.info("SLA policies synced", extra={"created": created, "updated": updated})
        return {"created": created, "updated": updated}


# ========== Reporting ==========

class SLAReportingService:
    """Read-side queries over timers, breaches and escalations."""

    def __init__(self, uow_factory: UnitOfWorkFactory, clock: Optional[Clock] = None):
        self._uow_factory = uow_factory
        self._clock = clock or utc_now

    async def list_timers(
        self,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 100,
        offset: int = 0,
        now: Optional[datetime] = None
    ) -> List[TimerView]:
        """
        Timer views, most urgent (least remaining time) first.

        Remaining time is computed on read, so ordering, the risk_level
        filter and paging all happen after the views are built.
        """
        now = ensure_utc(now or self._clock())
        filters = dict(filters or {})
        risk_level = filters.pop("risk_level", None)

        async with self._uow_factory() as uow:
            timers = await uow.timers.list(filters)
            policies: Dict[str, Optional[SLAPolicy]] = {}
            views = []
            for timer in timers:
                if timer.policy_id not in policies:
                    policies[timer.policy_id] = await uow.policies.get(timer.policy_id)
                views.append(SLACalculator.build_view(timer, policies[timer.policy_id], now))

        if risk_level:
            views = [v for v in views if v.risk_level == risk_level]
        views.sort(key=lambda v: v.remaining_minutes)
        return views[offset:offset + limit]

    async def list_breaches(
        self,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[SLABreach]:
        async with self._uow_factory() as uow:
            return await uow.breaches.list(filters or {}, limit=limit, offset=offset)

    async def list_escalations(self, ticket_id: str) -> List[SLAEscalation]:
        async with self._uow_factory() as uow:
            return await uow.escalations.list_for_ticket(ticket_id)

    async def get_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Compliance statistics for timers started in ``[start, end]``.

        Compliance counts completed timers that never breached; averages
        are working minutes of completed timers per metric.
        """
        now = ensure_utc(now or self._clock())

        async with self._uow_factory() as uow:
            policies = await uow.policies.list()
            by_status = await uow.timers.count_by_status(start, end)
            breaches_by_metric = await uow.breaches.count_by_metric(start, end)
            escalations_by_level = await uow.escalations.count_by_level(start, end)

            completed = await uow.timers.list(
                {"status": TimerStatus.COMPLETED, "started_from": start, "started_to": end}
            )
            running = await uow.timers.list(
                {"status": TimerStatus.RUNNING, "started_from": start, "started_to": end}
            )
            policy_map = {p.id: p for p in policies}

        at_risk = breached_open = 0
        for timer in running:
            policy = policy_map.get(timer.policy_id)
            if policy is None:
                continue
            risk = SLACalculator.compute(timer, policy, now).risk_level
            if risk == RiskLevel.BREACHED:
                breached_open += 1
            elif risk != RiskLevel.NONE:
                at_risk += 1

        met = sum(1 for t in completed if t.breached_at is None)
        compliance = round(met / len(completed) * 100, 2) if completed else None

        averages = {}
        for metric in VALID_METRICS:
            values = [t.elapsed_working_minutes for t in completed if t.metric == metric]
            averages[metric] = round(sum(values) / len(values), 2) if values else None

        return {
            "generated_at": now.isoformat(),
            "period_start": start.isoformat() if start else None,
            "period_end": end.isoformat() if end else None,
            "policies_total": len(policies),
            "policies_active": sum(1 for p in policies if p.is_active),
            "timers_by_status": by_status,
            "timers_at_risk": at_risk,
            "timers_breached_open": breached_open,
            "completed_timers": len(completed),
            "compliance_rate": compliance,
            "average_elapsed_minutes": averages,
            "breaches_total": sum(breaches_by_metric.values()),
            "breaches_by_metric": breaches_by_metric,
            "escalations_by_level": {level: escalations_by_level.get(level, 0) for level in ESCALATION_LEVELS},
        }
