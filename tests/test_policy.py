"""
Policy file loading and reload tests.
"""
import pytest

from taskflow.config import FallbackStrategy, MatchingMode
from taskflow.core import ConfigurationException
from taskflow.infrastructure.policy import PolicyConfigManager

POLICY = """
assignment:
  matching:
    mode: strict
    fallback_strategy: manual_gate
  guardrails:
    max_assignments_per_user_per_day: 4
  automation:
    auto_escalate_stalled: true
    escalate_after_hours: 6
deadlines:
  default_sla_hours: 36
reminders:
  r1_offset_minutes: 120
  r2_offset_minutes: 30
"""


@pytest.fixture
def policy_file(tmp_path):
    path = tmp_path / "taskflow_policy.yaml"
    path.write_text(POLICY)
    return path


def test_load_policy_file(policy_file):
    manager = PolicyConfigManager()
    manager.load(policy_file)

    assignment = manager.get_assignment_settings()
    assert assignment.matching.mode == MatchingMode.STRICT
    assert assignment.matching.fallback_strategy == FallbackStrategy.MANUAL_GATE
    assert assignment.guardrails.max_assignments_per_user_per_day == 4
    assert assignment.guardrails.default_wip_limit == 5
    assert manager.get_automation_settings().escalate_after_hours == 6
    assert manager.get_deadline_settings().default_sla_hours == 36
    assert manager.get_reminder_settings().r3_offset_minutes == 0


def test_missing_file_uses_defaults(tmp_path):
    manager = PolicyConfigManager()
    manager.load(tmp_path / "absent.yaml")

    assert manager.get_deadline_settings().default_sla_hours == 24
    assert manager.get_assignment_settings().matching.mode == MatchingMode.BALANCED


@pytest.mark.parametrize("content", [
    "assignment:\n  guardrails:\n    unknown_option: 1\n",
    "reminders:\n  r1_offset_minutes: 10\n  r2_offset_minutes: 60\n",
    "deadlines:\n  default_sla_hours: [unclosed\n",
])
def test_invalid_file_is_rejected(tmp_path, content):
    path = tmp_path / "bad.yaml"
    path.write_text(content)

    with pytest.raises(ConfigurationException):
        PolicyConfigManager().load(path)


def test_failed_reload_keeps_previous_policy(policy_file):
    manager = PolicyConfigManager()
    manager.load(policy_file)

    policy_file.write_text("deadlines:\n  default_sla_hours: -5\n")
    assert manager.reload() is False
    assert manager.get_deadline_settings().default_sla_hours == 36

    policy_file.write_text("deadlines:\n  default_sla_hours: 12\n")
    assert manager.reload() is True
    assert manager.get_deadline_settings().default_sla_hours == 12


def test_policy_must_be_loaded_before_use():
    manager = PolicyConfigManager()

    with pytest.raises(RuntimeError):
        manager.get_assignment_settings()
    assert manager.reload() is False
