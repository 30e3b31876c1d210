"""
Agenda Digest Dispatcher

One invocation:
1. Fetch pending commitments in [now, now + window_hours)
2. Load profiles for their owners and keep the opted-in ones
3. Load notification settings and keep users whose local send time is due
4. Group commitments per user (store order preserved)
5. Render and send one email per user on a worker pool

Store reads abort the run (DataStoreError propagates). Send failures are
recorded per recipient and never affect other recipients. Nothing is written.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from docketq.agenda.grouping import group_by_user
from docketq.agenda.models import (
    Commitment,
    DispatchResult,
    DispatchStatus,
    NotificationSettings,
    Profile,
    RunSummary,
)
from docketq.agenda.repository import AgendaStore
from docketq.agenda.scheduling import effective_send_time, is_due, resolve_timezone
from docketq.agenda.template import (
    AGENDA_SUBJECT,
    TEST_SUBJECT,
    Renderer,
    get_renderer,
    sample_commitments,
)
from docketq.config import DigestConfig
from docketq.delivery.mailer import MailSender, OutboundEmail
from docketq.errors import MailSendError
from docketq.observability.logging import get_logger
from docketq.observability.telemetry import counter, log_event, time_block
from docketq.utils.redaction import mask_email, redact

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class _DispatchJob:
    """Everything needed to render and send one recipient's email."""

    key: str
    to: str
    full_name: str
    items: Sequence[Commitment]
    timezone: str
    subject: str
    preferred_time: str | None = None
    test_mode: bool = False


class AgendaDigestDispatcher:
    """Builds and sends the daily agenda digest."""

    def __init__(
        self,
        config: DigestConfig,
        store: AgendaStore,
        sender: MailSender,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.store = store
        self.sender = sender
        self._clock = clock

    def _now(self, now: datetime | None) -> datetime:
        current = now or self._clock()
        if current.tzinfo is None:
            current = current.replace(tzinfo=UTC)
        return current.astimezone(UTC)

    def _window_end(self, now: datetime) -> datetime:
        return now + timedelta(hours=self.config.window_hours)

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    def preview(self, template: str | None = None, now: datetime | None = None) -> str:
        """
        Render the template with sample data. Touches neither store nor sender.
        """
        renderer = get_renderer(template)
        current = self._now(now)
        rendered = renderer(
            "Example",
            sample_commitments(current),
            self.config.default_timezone,
        )
        log_event("agenda.preview.rendered", template=template or "default")
        return rendered.html

    # ------------------------------------------------------------------
    # Scheduled run
    # ------------------------------------------------------------------

    def run(self, now: datetime | None = None, template: str | None = None) -> RunSummary:
        """
        Send the digest to every opted-in user who is due at this instant.

        Raises:
            DataStoreError: if any store read fails (nothing is sent)
            TemplateError: if the template name is unknown
        """
        renderer = get_renderer(template)
        current = self._now(now)
        end = self._window_end(current)
        log_event("agenda.run.start", now=current.isoformat(), window_end=end.isoformat())

        with time_block("agenda.run.latency"):
            commitments = self.store.fetch_pending_commitments(current, end)
            if not commitments:
                log_event("agenda.run.no_commitments")
                return RunSummary(message="No commitments in next 24h")

            user_ids = list(dict.fromkeys(c.user_id for c in commitments))
            profiles = {p.user_id: p for p in self.store.fetch_profiles(user_ids)}

            opted_in = [
                uid
                for uid in user_ids
                if uid in profiles and profiles[uid].receive_agenda_notifications
            ]
            for uid in user_ids:
                if uid not in opted_in:
                    log_event("agenda.user.skipped", user=redact(uid), reason="opted_out")
            if not opted_in:
                log_event("agenda.run.no_recipients", reason="opted_out")
                return RunSummary(message="No opted-in users to notify")

            settings = {s.user_id: s for s in self.store.fetch_notification_settings(opted_in)}
            due = self._due_users(current, opted_in, profiles, settings)
            if not due:
                log_event("agenda.run.no_recipients", reason="outside_send_window")
                return RunSummary(message="No users due for the agenda digest at this time")

            grouped = group_by_user(c for c in commitments if c.user_id in due)
            jobs = []
            for uid, items in grouped.items():
                address = self.store.get_user_email(uid)
                if not address:
                    log_event("agenda.user.skipped", user=redact(uid), reason="no_email")
                    continue
                timezone, send_time = due[uid]
                jobs.append(
                    _DispatchJob(
                        key=uid,
                        to=address,
                        full_name=profiles[uid].full_name,
                        items=items,
                        timezone=timezone,
                        subject=AGENDA_SUBJECT,
                        preferred_time=send_time,
                    )
                )

            results = self._dispatch(jobs, renderer)

        summary = RunSummary(message="", results=results, processed_users=len(grouped))
        if jobs:
            summary.message = f"Sent {summary.sent} of {len(jobs)} agenda emails"
        else:
            summary.message = "No due users have an email address on file"
        log_event(
            "agenda.run.complete",
            processed_users=summary.processed_users,
            sent=summary.sent,
            failed=summary.failed,
        )
        return summary

    def _due_users(
        self,
        now: datetime,
        user_ids: Sequence[str],
        profiles: dict[str, Profile],
        settings: dict[str, NotificationSettings],
    ) -> dict[str, tuple[str, str]]:
        """user_id -> (timezone, send_time) for users whose window contains now."""
        due: dict[str, tuple[str, str]] = {}
        for uid in user_ids:
            user_settings = settings.get(uid)
            timezone = resolve_timezone(
                profiles.get(uid), user_settings, self.config.default_timezone
            )
            send_time = effective_send_time(user_settings, self.config.default_send_time)
            if is_due(now, timezone, send_time, self.config.eligibility_minutes):
                due[uid] = (timezone, send_time)
            else:
                log_event(
                    "agenda.user.skipped",
                    user=redact(uid),
                    reason="outside_send_window",
                    timezone=timezone,
                    send_time=send_time,
                )
        return due

    # ------------------------------------------------------------------
    # Test dispatch
    # ------------------------------------------------------------------

    def send_test(
        self,
        test_email: str,
        template: str | None = None,
        now: datetime | None = None,
    ) -> RunSummary:
        """
        Send exactly one email to test_email, ignoring opt-in and send time.

        A matching account personalizes the email with its name, timezone and
        real commitments; without commitments (or without an account) the
        email carries sample data.

        Raises:
            DataStoreError: if a store read fails
            TemplateError: if the template name is unknown
        """
        renderer = get_renderer(template)
        current = self._now(now)
        address = test_email.strip()

        account = self.store.find_user_by_email(address)
        if account is None:
            job = _DispatchJob(
                key=address,
                to=address,
                full_name="",
                items=sample_commitments(current, test=True),
                timezone=self.config.default_timezone,
                subject=TEST_SUBJECT,
                test_mode=True,
            )
            message = f"Test sent to {address} (no matching account, sample data)"
        else:
            profile = next(iter(self.store.fetch_profiles([account.id])), None)
            user_settings = next(iter(self.store.fetch_notification_settings([account.id])), None)
            timezone = resolve_timezone(profile, user_settings, self.config.default_timezone)
            real_items = [
                c
                for c in self.store.fetch_pending_commitments(current, self._window_end(current))
                if c.user_id == account.id
            ]
            job = _DispatchJob(
                key=account.id,
                to=account.email or address,
                full_name=profile.full_name if profile else "",
                items=real_items or sample_commitments(current, account.id, test=True),
                timezone=timezone,
                subject=TEST_SUBJECT,
                preferred_time=effective_send_time(user_settings, self.config.default_send_time),
                test_mode=True,
            )
            if real_items:
                message = f"Test sent to {address} ({len(real_items)} real commitments)"
            else:
                message = f"Test sent to {address} (no real commitments, sample data)"

        results = self._dispatch([job], renderer)
        if results[job.key].status is DispatchStatus.SENT:
            log_event("agenda.test.sent", to=mask_email(address))
        else:
            message = f"Test email to {address} failed"

        return RunSummary(message=message, results=results, processed_users=1, test_mode=True)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _dispatch(self, jobs: Sequence[_DispatchJob], renderer: Renderer) -> dict[str, DispatchResult]:
        """
        Deliver jobs concurrently; one result per job, in completion order.

        Jobs still running after dispatch_timeout_seconds are recorded as errors.
        """
        if not jobs:
            return {}

        results: dict[str, DispatchResult] = {}
        executor = ThreadPoolExecutor(
            max_workers=min(self.config.max_workers, len(jobs)),
            thread_name_prefix="agenda-dispatch",
        )
        future_to_job = {executor.submit(self._deliver, job, renderer): job for job in jobs}
        try:
            for future in as_completed(future_to_job, timeout=self.config.dispatch_timeout_seconds):
                job = future_to_job[future]
                results[job.key] = future.result()
        except TimeoutError:
            timeout = self.config.dispatch_timeout_seconds
            for future, job in future_to_job.items():
                if job.key in results:
                    continue
                if future.done() and not future.cancelled():
                    # Finished between the deadline and this sweep
                    results[job.key] = future.result()
                    continue
                future.cancel()
                logger.error("Dispatch to %s timed out after %.0fs", redact(job.key), timeout)
                counter("agenda.email.errors")
                results[job.key] = self._error_result(
                    job, f"Dispatch timed out after {timeout:.0f}s"
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return results

    def _deliver(self, job: _DispatchJob, renderer: Renderer) -> DispatchResult:
        """Render and send one email. Never raises."""
        try:
            rendered = renderer(job.full_name, job.items, job.timezone)
            email_id = self.sender.send(
                OutboundEmail(to=job.to, subject=job.subject, html=rendered.html, text=rendered.text)
            )
        except MailSendError as e:
            logger.warning("Agenda email to %s failed: %s", mask_email(job.to), e)
            return self._record_error(job, str(e))
        except Exception as e:
            logger.exception("Unexpected error sending agenda email to %s", mask_email(job.to))
            return self._record_error(job, str(e))

        counter("agenda.email.sent")
        log_event(
            "agenda.email.sent",
            user=redact(job.key),
            items=len(job.items),
            timezone=job.timezone,
            test_mode=job.test_mode,
        )
        return DispatchResult(
            status=DispatchStatus.SENT,
            timezone=job.timezone,
            email_id=email_id,
            preferred_time=job.preferred_time,
            test_mode=job.test_mode,
        )

    def _record_error(self, job: _DispatchJob, error: str) -> DispatchResult:
        counter("agenda.email.errors")
        log_event("agenda.email.error", user=redact(job.key), error=error)
        return self._error_result(job, error)

    @staticmethod
    def _error_result(job: _DispatchJob, error: str) -> DispatchResult:
        return DispatchResult(
            status=DispatchStatus.ERROR,
            timezone=job.timezone,
            preferred_time=job.preferred_time,
            error=error,
            test_mode=job.test_mode,
        )
