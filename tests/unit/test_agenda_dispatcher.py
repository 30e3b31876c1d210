"""Unit tests for AgendaDigestDispatcher

Uses the in-memory store and sender from conftest. NOW is 08:30 in
America/Sao_Paulo, so the default "08:00" preference is due.
"""

from __future__ import annotations

import dataclasses
import threading
from concurrent.futures import wait
from datetime import timedelta

import pytest

from docketq.agenda.dispatcher import AgendaDigestDispatcher
from docketq.agenda.models import DispatchStatus
from docketq.agenda.template import AGENDA_SUBJECT, TEST_SUBJECT
from docketq.errors import DataStoreError, MailSendError, TemplateError
from docketq.observability.telemetry import get_counter


@pytest.fixture
def dispatcher(config, store, sender, now):
    return AgendaDigestDispatcher(config, store, sender, clock=lambda: now)


class TestScheduledRun:
    def test_no_commitments_skips_profile_and_settings_reads(self, dispatcher, store, sender):
        store.add_user("u1", email="ana@example.com")

        summary = dispatcher.run()

        assert summary.message == "No commitments in next 24h"
        assert summary.sent == 0
        assert summary.processed_users == 0
        assert store.calls == ["fetch_pending_commitments"]
        assert sender.sent == []

    def test_commitments_outside_window_are_ignored(self, dispatcher, store, sender):
        store.add_user("u1", email="ana@example.com")
        store.add_commitment("u1", "yesterday", -2)
        store.add_commitment("u1", "day after tomorrow", 30)
        store.add_commitment("u1", "closed", 3, status="done")

        summary = dispatcher.run()

        assert summary.message == "No commitments in next 24h"
        assert sender.sent == []

    def test_sends_one_email_per_due_user(self, dispatcher, store, sender):
        store.add_user("u1", email="ana@example.com", full_name="Ana")
        store.add_user("u2", email="bruno@example.com", full_name="Bruno")
        store.add_commitment("u1", "Hearing", 2)
        store.add_commitment("u2", "Filing", 3)
        store.add_commitment("u1", "Deadline", 5)

        summary = dispatcher.run()

        assert summary.sent == 2
        assert summary.processed_users == 2
        assert summary.message == "Sent 2 of 2 agenda emails"
        assert sender.recipients == {"ana@example.com", "bruno@example.com"}
        ana = next(m for m in sender.sent if m.to == "ana@example.com")
        assert ana.subject == AGENDA_SUBJECT
        assert "Hearing" in ana.html and "Deadline" in ana.html
        assert "You have 2 commitments" in ana.html
        assert summary.results["u1"].status is DispatchStatus.SENT
        assert summary.results["u1"].timezone == "America/Sao_Paulo"
        assert summary.results["u1"].preferred_time == "08:00"
        assert get_counter("agenda.email.sent") == 2

    def test_opted_out_and_profileless_users_excluded(self, dispatcher, store, sender):
        store.add_user("in", email="in@example.com")
        store.add_user("out", email="out@example.com", opted_in=False)
        store.add_commitment("in", "Hearing", 2)
        store.add_commitment("out", "Hearing", 2)
        store.add_commitment("ghost", "Orphan", 2)

        summary = dispatcher.run()

        assert sender.recipients == {"in@example.com"}
        assert set(summary.results) == {"in"}

    def test_everyone_opted_out_skips_settings_read(self, dispatcher, store, sender):
        store.add_user("out", email="out@example.com", opted_in=False)
        store.add_commitment("out", "Hearing", 2)

        summary = dispatcher.run()

        assert summary.message == "No opted-in users to notify"
        assert "fetch_notification_settings" not in store.calls
        assert sender.sent == []

    def test_users_outside_send_window_are_skipped(self, dispatcher, store, sender):
        store.add_user("due", email="due@example.com", send_time="08:00")
        store.add_user("later", email="later@example.com", send_time="09:00")
        store.add_user("earlier", email="earlier@example.com", send_time="07:00")
        for uid in ("due", "later", "earlier"):
            store.add_commitment(uid, "Hearing", 2)

        summary = dispatcher.run()

        assert sender.recipients == {"due@example.com"}
        assert summary.processed_users == 1

    def test_nobody_due(self, dispatcher, store, sender):
        store.add_user("u1", email="ana@example.com", send_time="18:00")
        store.add_commitment("u1", "Hearing", 2)

        summary = dispatcher.run()

        assert summary.message == "No users due for the agenda digest at this time"
        assert sender.sent == []

    def test_missing_settings_use_default_send_time(self, dispatcher, store, sender):
        store.add_user("u1", email="ana@example.com", send_time=None)
        store.add_commitment("u1", "Hearing", 2)

        summary = dispatcher.run()

        assert summary.sent == 1
        assert summary.results["u1"].preferred_time == "08:00"

    def test_profile_timezone_decides_eligibility(self, dispatcher, store, sender):
        # 11:30 UTC: 11:30 in London (GMT in March before DST), 20:30 in Tokyo
        store.add_user("london", email="l@example.com", timezone="Europe/London", send_time="11:00")
        store.add_user("tokyo", email="t@example.com", timezone="Asia/Tokyo", send_time="11:00")
        store.add_commitment("london", "Hearing", 2)
        store.add_commitment("tokyo", "Hearing", 2)

        summary = dispatcher.run()

        assert sender.recipients == {"l@example.com"}
        assert summary.results["london"].timezone == "Europe/London"

    def test_region_only_timezone_does_not_abort_run(self, dispatcher, store, sender):
        store.add_user("u1", email="ana@example.com", timezone="America")
        store.add_user("u2", email="bruno@example.com", agenda_timezone="Etc")
        store.add_user("u3", email="carla@example.com", timezone="America/Sao_Paulo")
        for uid in ("u1", "u2", "u3"):
            store.add_commitment(uid, "Hearing", 2)

        summary = dispatcher.run()

        # Unusable zones fall back to the default (Sao Paulo), where 08:00 is due
        assert summary.sent == 3
        assert summary.results["u1"].timezone == "America/Sao_Paulo"
        assert summary.results["u2"].timezone == "America/Sao_Paulo"

    def test_user_without_email_is_skipped(self, dispatcher, store, sender):
        store.add_user("u1", email="ana@example.com")
        store.add_user("u2", email=None)
        store.add_commitment("u1", "Hearing", 2)
        store.add_commitment("u2", "Hearing", 2)

        summary = dispatcher.run()

        assert set(summary.results) == {"u1"}
        assert summary.processed_users == 2
        assert summary.message == "Sent 1 of 1 agenda emails"

    def test_only_user_without_email(self, dispatcher, store, sender):
        store.add_user("u2", email=None)
        store.add_commitment("u2", "Hearing", 2)

        summary = dispatcher.run()

        assert summary.message == "No due users have an email address on file"
        assert summary.results == {}

    def test_send_failure_is_isolated(self, dispatcher, store, sender):
        for uid in ("a", "b", "c"):
            store.add_user(uid, email=f"{uid}@example.com")
            store.add_commitment(uid, "Hearing", 2)
        sender.fail_for["b@example.com"] = MailSendError("Mail provider error 422: invalid recipient")

        summary = dispatcher.run()

        assert summary.sent == 2
        assert summary.failed == 1
        assert summary.results["b"].status is DispatchStatus.ERROR
        assert "invalid recipient" in summary.results["b"].error
        assert sender.recipients == {"a@example.com", "c@example.com"}
        assert get_counter("agenda.email.errors") == 1

    def test_unexpected_sender_exception_is_recorded(self, dispatcher, store, sender):
        store.add_user("a", email="a@example.com")
        store.add_commitment("a", "Hearing", 2)
        sender.fail_for["a@example.com"] = RuntimeError("boom")

        summary = dispatcher.run()

        assert summary.results["a"].status is DispatchStatus.ERROR
        assert summary.results["a"].error == "boom"

    def test_slow_recipient_times_out_without_blocking_others(self, config, store, sender, now):
        release = threading.Event()
        original_send = sender.send

        def send(message):
            if message.to == "slow@example.com":
                release.wait(5)
            return original_send(message)

        sender.send = send
        for uid in ("fast", "slow"):
            store.add_user(uid, email=f"{uid}@example.com")
            store.add_commitment(uid, "Hearing", 2)
        quick = dataclasses.replace(config, dispatch_timeout_seconds=0.5)

        try:
            summary = AgendaDigestDispatcher(quick, store, sender).run(now=now)
        finally:
            release.set()

        assert summary.results["fast"].status is DispatchStatus.SENT
        assert summary.results["slow"].status is DispatchStatus.ERROR
        assert "timed out" in summary.results["slow"].error

    def test_sends_finished_at_the_deadline_count_as_sent(self, dispatcher, store, sender, monkeypatch):
        def deadline_after_all_finish(futures, timeout=None):
            wait(futures)
            raise TimeoutError
            yield  # pragma: no cover

        monkeypatch.setattr("docketq.agenda.dispatcher.as_completed", deadline_after_all_finish)
        for uid in ("a", "b"):
            store.add_user(uid, email=f"{uid}@example.com")
            store.add_commitment(uid, "Hearing", 2)

        summary = dispatcher.run()

        assert summary.sent == 2
        assert summary.failed == 0
        assert get_counter("agenda.email.errors") == 0

    @pytest.mark.parametrize(
        "method",
        ["fetch_pending_commitments", "fetch_profiles", "fetch_notification_settings", "get_user_email"],
    )
    def test_store_failure_aborts_run(self, dispatcher, store, sender, method):
        store.add_user("u1", email="ana@example.com")
        store.add_commitment("u1", "Hearing", 2)
        store.fail_on.add(method)

        with pytest.raises(DataStoreError):
            dispatcher.run()
        assert sender.sent == []

    def test_unknown_template_rejected_before_store_access(self, dispatcher, store):
        with pytest.raises(TemplateError):
            dispatcher.run(template="nope")
        assert store.calls == []

    def test_summary_dict_shape(self, dispatcher, store):
        store.add_user("u1", email="ana@example.com")
        store.add_commitment("u1", "Hearing", 2)

        data = dispatcher.run().to_dict()

        assert data["sent"] == 1
        assert data["processed_users"] == 1
        assert data["results"]["u1"]["status"] == "sent"
        assert data["results"]["u1"]["email_id"] == "email-1"
        assert "test_mode" not in data

    def test_explicit_now_overrides_clock(self, dispatcher, store, sender, now):
        store.add_user("u1", email="ana@example.com")
        store.add_commitment("u1", "Hearing", 2)

        # Two hours later it is 10:30 local; 08:00 preference no longer due
        summary = dispatcher.run(now=now + timedelta(hours=2))

        assert summary.sent == 0
        assert sender.sent == []


class TestTestDispatch:
    def test_unknown_address_gets_sample_data(self, dispatcher, store, sender):
        summary = dispatcher.send_test("someone@example.com")

        assert summary.sent == 1
        assert summary.test_mode is True
        assert summary.processed_users == 1
        assert "no matching account" in summary.message
        result = summary.results["someone@example.com"]
        assert result.test_mode is True
        assert result.timezone == "America/Sao_Paulo"
        message = sender.sent[0]
        assert message.subject == TEST_SUBJECT
        assert "Test: Conciliation hearing" in message.html

    def test_account_without_commitments_bypasses_optin_and_window(self, dispatcher, store, sender):
        store.add_user("u1", email="ana@example.com", full_name="Ana", opted_in=False, send_time="18:00")

        summary = dispatcher.send_test("Ana@Example.com")

        assert summary.sent == 1
        assert summary.test_mode is True
        assert "no real commitments" in summary.message
        assert summary.results["u1"].test_mode is True
        assert sender.sent[0].to == "ana@example.com"
        assert "Hello, Ana!" in sender.sent[0].html

    def test_account_with_commitments_uses_real_items(self, dispatcher, store, sender):
        store.add_user("u1", email="ana@example.com", timezone="Europe/Lisbon")
        store.add_user("u2", email="bruno@example.com")
        store.add_commitment("u1", "Real hearing", 2)
        store.add_commitment("u2", "Someone else's", 2)

        summary = dispatcher.send_test("ana@example.com")

        assert "1 real commitments" in summary.message
        html = sender.sent[0].html
        assert "Real hearing" in html
        assert "Someone else" not in html
        assert summary.results["u1"].timezone == "Europe/Lisbon"
        assert len(sender.sent) == 1

    def test_failed_test_send(self, dispatcher, sender):
        sender.fail_for["x@example.com"] = MailSendError("Mail provider timed out after 5s")

        summary = dispatcher.send_test("x@example.com")

        assert summary.sent == 0
        assert summary.message == "Test email to x@example.com failed"
        assert summary.results["x@example.com"].status is DispatchStatus.ERROR
        assert summary.to_dict()["test_mode"] is True


class TestPreview:
    def test_preview_touches_nothing(self, dispatcher, store, sender):
        html = dispatcher.preview()

        assert "Hello, Example!" in html
        assert "Conciliation hearing" in html
        assert store.calls == []
        assert sender.sent == []

    def test_preview_unknown_template(self, dispatcher):
        with pytest.raises(TemplateError):
            dispatcher.preview(template="missing")
