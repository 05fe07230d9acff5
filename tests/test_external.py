"""
Unit tests for external integrations: policy file loading, circuit breaker,
webhook dispatcher and scheduler wrapper.
"""

import asyncio
import json

import httpx
import pytest

from civic_sla.config import IssueCategory, IssuePriority, NotificationKind
from civic_sla.core import ConfigurationException, DispatchFailureException
from civic_sla.sla.infrastructure import (
    CircuitBreaker,
    CircuitState,
    SLAPolicyManager,
    SLAScheduler,
    WebhookNotificationDispatcher,
)
from civic_sla.sla.infrastructure import external

POLICY_YAML = """
categories:
  pothole:
    high: {target_hours: 10, escalation_hours: 4}
areas:
  ward_7:
    priority: high
    targets: {pothole: 5}
escalation_rules:
  warning:
    notify_roles: [field_supervisor]
"""


class TestSLAPolicyManager:

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text(POLICY_YAML)

        policy = SLAPolicyManager().load(path)

        target = policy.get_default_target(IssueCategory.POTHOLE, IssuePriority.HIGH)
        assert target.target_hours == 10
        assert policy.get_area_target_hours("ward_7", IssueCategory.POTHOLE) == 5
        assert policy.get_recipients(NotificationKind.WARNING) == ["field_supervisor"]

    def test_missing_file_uses_defaults(self, tmp_path):
        manager = SLAPolicyManager()
        manager.load(tmp_path / "absent.yaml")

        assert "central_delhi" in manager.get_policy().areas

    def test_invalid_file_raises(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text("categories:\n  pothole:\n    high: {target_hours: -1, escalation_hours: 4}\n")

        with pytest.raises(ConfigurationException):
            SLAPolicyManager().load(path)

    def test_reload_swaps_policy(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text(POLICY_YAML)
        manager = SLAPolicyManager()
        manager.load(path)

        path.write_text(POLICY_YAML.replace("target_hours: 10", "target_hours: 20"))
        assert manager.reload() is True

        target = manager.policy.get_default_target(IssueCategory.POTHOLE, IssuePriority.HIGH)
        assert target.target_hours == 20

    def test_failed_reload_keeps_current_policy(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text(POLICY_YAML)
        manager = SLAPolicyManager()
        manager.load(path)

        path.write_text("categories: [not, a, mapping")
        assert manager.reload() is False
        assert manager.policy.get_area_target_hours("ward_7", IssueCategory.POTHOLE) == 5

    def test_policy_before_load(self):
        with pytest.raises(RuntimeError):
            SLAPolicyManager().get_policy()

    def test_watching_starts_and_stops(self, tmp_path):
        path = tmp_path / "sla_policy.yaml"
        path.write_text(POLICY_YAML)
        manager = SLAPolicyManager()
        manager.load(path)

        manager.start_watching()
        manager.stop_watching()
        manager.stop_watching()


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)

        breaker.record_failure()
        assert breaker.allow_request() is True
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

    def test_half_open_after_recovery(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()

        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED


def _dispatcher(handler, **kwargs) -> WebhookNotificationDispatcher:
    options = {
        "webhook_url": "https://hooks.example.gov/sla",
        "max_retries": 3,
        "retry_base_delay": 0,
        "issue_url_template": "https://city.example.gov/issues/{issue_id}",
        "transport": httpx.MockTransport(handler),
    }
    options.update(kwargs)
    return WebhookNotificationDispatcher(**options)


METADATA = {"title": "Broken main", "area": "gurgaon", "hours_remaining": 0, "hours_overdue": 2.5}


class TestWebhookNotificationDispatcher:

    @pytest.mark.asyncio
    async def test_posts_escalation_payload(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(200)

        dispatcher = _dispatcher(handler)
        ok = await dispatcher.dispatch(NotificationKind.ESCALATION, "ISSUE-9", "super_admin", METADATA)
        await dispatcher.close()

        assert ok is True
        payload = received[0]
        assert payload["title"] == "SLA Breached - Immediate Action Required"
        assert payload["message"] == 'Issue "Broken main" has breached SLA deadline. Escalation initiated.'
        assert payload["recipient_role"] == "super_admin"
        assert payload["severity"] == "critical"
        assert payload["url"] == "https://city.example.gov/issues/ISSUE-9"

    @pytest.mark.asyncio
    async def test_retries_then_fails(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(500)

        dispatcher = _dispatcher(handler)
        ok = await dispatcher.dispatch(NotificationKind.WARNING, "ISSUE-9", "city_engineer", METADATA)

        assert ok is False
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_recovers_within_retries(self):
        responses = iter([httpx.Response(503), httpx.Response(202)])
        dispatcher = _dispatcher(lambda request: next(responses))

        assert await dispatcher.dispatch(NotificationKind.REMINDER, "ISSUE-9", "auditor", METADATA) is True

    @pytest.mark.asyncio
    async def test_transport_errors_are_failures(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        dispatcher = _dispatcher(handler, max_retries=2)
        assert await dispatcher.dispatch(NotificationKind.WARNING, "ISSUE-9", "city_engineer", METADATA) is False

    @pytest.mark.asyncio
    async def test_open_circuit_skips_request(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(200)

        dispatcher = _dispatcher(handler)
        for _ in range(dispatcher.circuit_breaker.failure_threshold):
            dispatcher.circuit_breaker.record_failure()

        assert await dispatcher.dispatch(NotificationKind.WARNING, "ISSUE-9", "city_engineer", METADATA) is False
        assert attempts == []

    @pytest.mark.asyncio
    async def test_hung_webhook_opens_circuit(self):
        async def handler(request):
            await asyncio.sleep(30)
            return httpx.Response(200)

        dispatcher = _dispatcher(handler)
        for _ in range(dispatcher.circuit_breaker.failure_threshold):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(
                    dispatcher.dispatch(NotificationKind.WARNING, "ISSUE-9", "city_engineer", METADATA),
                    timeout=0.05
                )

        assert dispatcher.circuit_breaker.state == CircuitState.OPEN
        assert await dispatcher.dispatch(NotificationKind.WARNING, "ISSUE-9", "city_engineer", METADATA) is False

    @pytest.mark.asyncio
    async def test_unconfigured_webhook_only_logs(self):
        def handler(request):
            raise AssertionError("no request expected")

        dispatcher = _dispatcher(handler, webhook_url="")
        assert await dispatcher.dispatch(NotificationKind.WARNING, "ISSUE-9", "city_engineer", METADATA) is True

    def test_message_templates(self):
        dispatcher = _dispatcher(lambda request: httpx.Response(200))

        warning = dispatcher.build_message(
            NotificationKind.WARNING, "ISSUE-9", "city_engineer", {**METADATA, "hours_remaining": 7.6}
        )
        reminder = dispatcher.build_message(NotificationKind.REMINDER, "ISSUE-9", "auditor", METADATA)

        assert warning["title"] == "SLA Deadline Approaching"
        assert warning["message"].endswith("7.6 hours remaining.")
        assert reminder["message"] == 'Issue "Broken main" is 2.5 hours past its SLA deadline and still open.'

    def test_critical_warning_under_an_hour(self):
        dispatcher = _dispatcher(lambda request: httpx.Response(200))

        message = dispatcher.build_message(
            NotificationKind.CRITICAL_WARNING, "ISSUE-9", "city_engineer",
            {**METADATA, "hours_remaining": 0.67}
        )

        assert message["message"] == 'Critical issue "Broken main" in gurgaon has 0.7 hours left before breach.'

    @pytest.mark.asyncio
    async def test_missing_template_raises(self, monkeypatch):
        monkeypatch.delitem(external.NOTIFICATION_TEMPLATES, NotificationKind.REMINDER)
        dispatcher = _dispatcher(lambda request: httpx.Response(200))

        with pytest.raises(DispatchFailureException):
            await dispatcher.dispatch(NotificationKind.REMINDER, "ISSUE-9", "auditor", METADATA)


class TestSLAScheduler:

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        async def job():
            return None

        scheduler = SLAScheduler(interval_seconds=3600)
        await scheduler.start(job)
        assert scheduler.is_running is True

        await scheduler.stop()
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_zero_interval_disables(self):
        async def job():
            return None

        scheduler = SLAScheduler(interval_seconds=0)
        await scheduler.start(job)
        assert scheduler.is_running is False
