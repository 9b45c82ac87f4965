"""
Shared Kernel Module
====================

This module contains shared infrastructure and domain elements used across
all bounded contexts (Assignment and SLA Tracking).

Architecture Pattern: Modular Monolith
- Each module (assignment, sla) is a bounded context
- Shared kernel contains generic infrastructure and the common records
  (users, tasks, categories) both contexts read

DO NOT add business logic from Assignment or SLA to shared kernel.
"""
