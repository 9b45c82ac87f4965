"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Database connection management and ORM models
- Policy file loading and hot reload
"""
