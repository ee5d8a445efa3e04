"""ORM Models - SQLAlchemy declarative models for the allocation ledger.

Invariants:
    - All models inherit from Base (db/base.py)
    - Property owns the token supply; Investment and Transaction reference it

Design Decisions:
    - One file per entity for locality
    - All models imported here so Base.metadata is complete before create_all
      or alembic autogenerate runs
"""

from app.models.user import User  # noqa: F401
from app.models.property import Property  # noqa: F401
from app.models.investment import Investment  # noqa: F401
from app.models.transaction import Transaction  # noqa: F401
