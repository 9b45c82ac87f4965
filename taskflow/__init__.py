"""
Taskflow
========

Task assignment and SLA tracking service.

Bounded contexts:
- assignment: workload tracking, candidate scoring, load balancing
- sla: deadlines, SLA pauses, reminders and escalations
"""

__version__ = "1.0.0"
