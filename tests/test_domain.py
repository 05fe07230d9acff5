"""
Unit tests for the SLA domain: deadline resolution, classification and
issue record invariants.
"""

from datetime import datetime, timezone

import pytest

from civic_sla.config import (
    IssueCategory, IssuePriority, IssueStatus, NotificationKind, SLAStatus
)
from civic_sla.core import InvariantViolationException
from civic_sla.sla.domain import (
    AreaPolicy,
    DeadlineResolver,
    EscalationCooldown,
    FALLBACK_ESCALATION_HOURS,
    FALLBACK_TARGET_HOURS,
    SLACalculator,
    SLAPolicyTable,
    ensure_utc,
)

from conftest import T0, hours, make_issue


class TestDeadlineResolver:
    """Deadline = area override, else category/priority target, else 72h."""

    def test_category_priority_default(self, policy):
        resolved = DeadlineResolver(policy).resolve_deadline(
            IssueCategory.WATER_LEAK, IssuePriority.CRITICAL, "unlisted_ward", T0
        )
        assert resolved.target_hours == 6
        assert resolved.escalation_threshold_hours == 12
        assert resolved.deadline == T0 + hours(6)
        assert resolved.area_override_applied is False

    def test_area_override_wins_for_target(self, policy):
        resolved = DeadlineResolver(policy).resolve_deadline(
            IssueCategory.WATER_LEAK, IssuePriority.HIGH, "central_delhi", T0
        )
        assert resolved.target_hours == 24
        assert resolved.deadline == T0 + hours(24)
        assert resolved.area_override_applied is True

    def test_escalation_hours_ignore_area_override(self, policy):
        resolver = DeadlineResolver(policy)
        in_area = resolver.resolve_deadline(IssueCategory.POTHOLE, IssuePriority.LOW, "gurgaon", T0)
        elsewhere = resolver.resolve_deadline(IssueCategory.POTHOLE, IssuePriority.LOW, "nowhere", T0)

        assert in_area.target_hours == 48
        assert elsewhere.target_hours == 72
        assert in_area.escalation_threshold_hours == elsewhere.escalation_threshold_hours == 96

    def test_missing_area_category_falls_back_to_default(self):
        policy = SLAPolicyTable(areas={"ward_7": AreaPolicy(targets={IssueCategory.POTHOLE: 10})})
        resolved = DeadlineResolver(policy).resolve_deadline(
            IssueCategory.DEBRIS, IssuePriority.MEDIUM, "ward_7", T0
        )
        assert resolved.target_hours == 12
        assert resolved.area_override_applied is False

    def test_non_positive_area_target_is_ignored(self):
        policy = SLAPolicyTable(areas={"ward_7": AreaPolicy(targets={IssueCategory.POTHOLE: 0})})
        resolved = DeadlineResolver(policy).resolve_deadline(
            IssueCategory.POTHOLE, IssuePriority.HIGH, "ward_7", T0
        )
        assert resolved.target_hours == 24
        assert resolved.area_override_applied is False

    def test_policy_gap_uses_fallbacks(self):
        resolver = DeadlineResolver(SLAPolicyTable(categories={}, areas={}))
        resolved = resolver.resolve_deadline(IssueCategory.OTHER, IssuePriority.LOW, "x", T0)

        assert resolved.target_hours == FALLBACK_TARGET_HOURS == 72
        assert resolved.escalation_threshold_hours == FALLBACK_ESCALATION_HOURS
        assert resolver.escalation_threshold_hours(IssueCategory.OTHER, IssuePriority.LOW) == 96

    def test_every_combination_yields_deadline_after_creation(self, policy):
        resolver = DeadlineResolver(policy)
        for area in ["central_delhi", "gurgaon", "unlisted_ward"]:
            for category in IssueCategory:
                for priority in IssuePriority:
                    resolved = resolver.resolve_deadline(category, priority, area, T0)
                    assert resolved.deadline > T0
                    assert resolved.escalation_threshold_hours > 0

    def test_deadline_depends_only_on_inputs(self, policy):
        resolver = DeadlineResolver(policy)
        first = resolver.resolve_deadline(IssueCategory.SIDEWALK, IssuePriority.MEDIUM, "faridabad", T0)
        second = resolver.resolve_deadline(IssueCategory.SIDEWALK, IssuePriority.MEDIUM, "faridabad", T0)
        assert first == second


class TestPolicyTable:

    def test_recipients_per_kind(self, policy):
        assert policy.get_recipients(NotificationKind.WARNING) == ["field_supervisor", "city_engineer"]
        assert "super_admin" in policy.get_recipients(NotificationKind.ESCALATION)
        assert policy.get_recipients(NotificationKind.REMINDER) == ["super_admin", "auditor"]

    def test_missing_rule_uses_default_recipients(self):
        policy = SLAPolicyTable(escalation_rules={})
        assert policy.get_recipients(NotificationKind.CRITICAL_WARNING) == [
            "field_supervisor", "city_engineer"
        ]

    def test_parses_plain_mapping(self):
        policy = SLAPolicyTable(**{
            "categories": {"pothole": {"high": {"target_hours": 5, "escalation_hours": 2}}},
            "areas": {},
        })
        target = policy.get_default_target(IssueCategory.POTHOLE, IssuePriority.HIGH)
        assert target.target_hours == 5
        assert policy.get_default_target(IssueCategory.DEBRIS, IssuePriority.HIGH) is None


class TestSLACalculator:
    """Bands: breached < 0 <= critical < esc/2 <= warning < esc <= compliant."""

    ESC = 36

    def classify_at(self, remaining: float) -> SLAStatus:
        deadline = T0 + hours(remaining)
        return SLACalculator.classify(T0, deadline, self.ESC)

    @pytest.mark.parametrize("remaining,expected", [
        (40, SLAStatus.COMPLIANT),
        (36, SLAStatus.COMPLIANT),
        (35.9, SLAStatus.WARNING),
        (18, SLAStatus.WARNING),
        (17.9, SLAStatus.CRITICAL),
        (0, SLAStatus.CRITICAL),
        (-0.01, SLAStatus.BREACHED),
        (-100, SLAStatus.BREACHED),
    ])
    def test_bands(self, remaining, expected):
        assert self.classify_at(remaining) == expected

    @pytest.mark.parametrize("elapsed,expected", [
        (0, SLAStatus.WARNING),
        (3, SLAStatus.CRITICAL),
        (6, SLAStatus.CRITICAL),
        (7, SLAStatus.BREACHED),
    ])
    def test_critical_water_leak_timeline(self, policy, elapsed, expected):
        resolved = DeadlineResolver(policy).resolve_deadline(
            IssueCategory.WATER_LEAK, IssuePriority.CRITICAL, "unlisted_ward", T0
        )

        status = SLACalculator.classify(
            T0 + hours(elapsed), resolved.deadline, resolved.escalation_threshold_hours
        )

        assert status == expected

    def test_resolved_is_settled(self):
        deadline = T0 - hours(10)
        assert SLACalculator.classify(T0, deadline, self.ESC, resolved_at=T0) == SLAStatus.SETTLED

    def test_severity_never_decreases_as_time_passes(self):
        rank = [SLAStatus.COMPLIANT, SLAStatus.WARNING, SLAStatus.CRITICAL, SLAStatus.BREACHED]
        deadline = T0 + hours(48)
        previous = 0
        for step in range(0, 60 * 4):
            now = T0 + hours(step / 4)
            current = rank.index(SLACalculator.classify(now, deadline, self.ESC))
            assert current >= previous
            previous = current

    def test_hours_remaining_sign(self):
        assert SLACalculator.hours_remaining(T0, T0 + hours(2)) == 2
        assert SLACalculator.hours_remaining(T0 + hours(3), T0 + hours(2)) == -1

    def test_progress_percent_clamped(self):
        deadline = T0 + hours(10)
        assert SLACalculator.progress_percent(T0, deadline, T0 + hours(5)) == 50
        assert SLACalculator.progress_percent(T0, deadline, T0 + hours(20)) == 100
        assert SLACalculator.progress_percent(T0, deadline, T0 - hours(1)) == 0


class TestIssueSLARecord:

    def test_naive_timestamps_are_utc(self):
        naive = datetime(2024, 1, 15, 10, 0)
        issue = make_issue(created_at=naive)
        assert issue.created_at.tzinfo == timezone.utc
        assert issue.sla_deadline == T0 + hours(24)
        assert ensure_utc(None) is None

    def test_missing_deadline_violates_invariant(self):
        with pytest.raises(InvariantViolationException):
            make_issue(target_hours=None).check_invariants()

    def test_deadline_not_after_creation_violates_invariant(self):
        with pytest.raises(InvariantViolationException) as exc:
            make_issue(sla_deadline=T0).check_invariants()
        assert exc.value.issue_id == "ISSUE-1"

    def test_resolution_before_creation_violates_invariant(self):
        with pytest.raises(InvariantViolationException):
            make_issue(resolved_at=T0 - hours(1)).check_invariants()

    def test_mark_escalated_once(self):
        issue = make_issue()
        assert issue.mark_escalated(T0 + hours(25)) is True
        assert issue.status == IssueStatus.ESCALATED
        assert issue.mark_escalated(T0 + hours(30)) is False
        assert issue.escalated_at == T0 + hours(25)

    def test_terminal_issue_cannot_escalate(self):
        issue = make_issue(status=IssueStatus.RESOLVED, resolved_at=T0 + hours(1))
        assert issue.mark_escalated(T0 + hours(25)) is False
        assert issue.escalated_at is None


class TestEscalationCooldown:

    def test_reminder_shares_escalation_slot(self):
        cooldown = EscalationCooldown()
        cooldown.record(NotificationKind.REMINDER, T0)
        assert cooldown.last_sent(NotificationKind.ESCALATION) == T0
        assert cooldown.last_sent(NotificationKind.WARNING) is None
