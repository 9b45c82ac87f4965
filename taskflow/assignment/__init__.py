"""
Assignment Module
=================

Bounded context for workload tracking and task assignment.

Responsibilities:
- Compute each user's priority and age weighted workload
- Score candidates for a task and pick an assignee under guardrails
- Fall back to a configured strategy when nobody scores high enough
- Suggest moves that even out load across a team
"""
