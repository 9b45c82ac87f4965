"""
SLA Module
==========

Bounded context for deadlines and SLA tracking.

Responsibilities:
- Derive due dates from rolling per-category completion statistics
- Pause and resume a task's SLA clock, including on user absence
- Emit deduplicated reminders (R1/R2/R3) and escalations from a periodic poll
- Report a task's effective deadline and SLA state
"""
