"""
Policy Configuration
====================

Business policy loaded from YAML with hot-reload support.

The file has three sections, each validated by its immutable model:

    assignment:      # taskflow.assignment.domain.AssignmentSettings
      matching: {mode: balanced, fallback_strategy: smart_balance, ...}
      guardrails: {max_assignments_per_user_per_day: 0, ...}
      score_modifiers: {seniority_boost: 0.1, ...}
      weights: {workload: 0.5, skill: 0.5}
      automation: {auto_escalate_stalled: false, escalate_after_hours: 12}
    deadlines:       # taskflow.sla.domain.DeadlineSettings
      default_sla_hours: 24
    reminders:       # taskflow.sla.domain.ReminderSettings
      r1_offset_minutes: 240

Missing sections or keys fall back to defaults; unknown keys are rejected.
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from taskflow.assignment.application.services import IAssignmentSettingsProvider
from taskflow.assignment.domain import AssignmentSettings, AutomationSettings
from taskflow.config import settings
from taskflow.core import ConfigurationException
from taskflow.shared.infrastructure.logging import get_logger
from taskflow.sla.application.services import ISLAPolicyProvider
from taskflow.sla.domain import DeadlineSettings, ReminderSettings

logger = get_logger(__name__)


class TaskflowPolicy(BaseModel):
    """Complete business policy; every recognised option lives in one of these sections."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    assignment: AssignmentSettings = Field(default_factory=AssignmentSettings)
    deadlines: DeadlineSettings = Field(default_factory=DeadlineSettings)
    reminders: ReminderSettings = Field(default_factory=ReminderSettings)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for policy file changes."""

    def __init__(self, manager: "PolicyConfigManager", path: Path):
        self.manager = manager
        self.path = path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.path.resolve():
            logger.info("Policy file changed", extra={"path": str(event.src_path)})
            self.manager.reload()


class PolicyConfigManager(IAssignmentSettingsProvider, ISLAPolicyProvider):
    """
    Thread-safe policy manager with hot-reload support.

    Readers always get a complete frozen policy; a reload swaps the whole
    object, and a reload that fails validation keeps the previous one.
    """

    def __init__(self, policy: Optional[TaskflowPolicy] = None):
        self._policy: Optional[TaskflowPolicy] = policy
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> TaskflowPolicy:
        """Initial load; raises ConfigurationException on an invalid file."""
        self._path = Path(path)
        try:
            policy = self._load_from_file(self._path)
        except (ValidationError, yaml.YAMLError) as e:
            raise ConfigurationException(
                f"Invalid policy file {self._path}", {"error": str(e)}
            ) from e
        with self._lock:
            self._policy = policy
        return policy

    @staticmethod
    def _load_from_file(path: Path) -> TaskflowPolicy:
        if not path.exists():
            logger.warning("Policy file not found, using defaults", extra={"path": str(path)})
            return TaskflowPolicy()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return TaskflowPolicy.model_validate(data)

    def reload(self) -> bool:
        """Reload from file, keeping the current policy if the new one is invalid."""
        if self._path is None:
            return False

        try:
            policy = self._load_from_file(self._path)
        except (ValidationError, yaml.YAMLError, OSError) as e:
            logger.error("Failed to reload policy", extra={"path": str(self._path), "error": str(e)})
            return False

        with self._lock:
            self._policy = policy
        logger.info("Policy reloaded", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        """Watch the policy file; skipped when it does not exist."""
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Policy file absent, not watching", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Watching policy file", extra={"path": str(self._path)})
        except OSError as e:
            # inotify is unavailable in some containers
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def policy(self) -> TaskflowPolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("Policy not loaded")
            return self._policy

    # ===== Provider interfaces =====

    def get_assignment_settings(self) -> AssignmentSettings:
        return self.policy.assignment

    def get_deadline_settings(self) -> DeadlineSettings:
        return self.policy.deadlines

    def get_reminder_settings(self) -> ReminderSettings:
        return self.policy.reminders

    def get_automation_settings(self) -> AutomationSettings:
        return self.policy.assignment.automation


_manager: Optional[PolicyConfigManager] = None


def get_policy_manager() -> PolicyConfigManager:
    """Process-wide policy manager, loaded from ``settings.policy_config_path`` on first use."""
    global _manager
    if _manager is None:
        manager = PolicyConfigManager()
        manager.load(settings.policy_config_path)
        _manager = manager
    return _manager
