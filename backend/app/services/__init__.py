"""Services Layer — allocation pipeline, property administration, persistence, event fan-out.

Invariants:
    - Services depend on repository protocols from core/, never on ORM rows directly
    - Only sql_repositories imports SQLAlchemy

Design Decisions:
    - One service per write path for locality (ADR: ExMA no god objects)
"""
