# backend/bizdash/__init__.py
"""
Business dashboard backend.

Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- The package exposes a clear surface.

The actual model classes are kept in bizdash/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models    # organizations / users / roles
from .apps.billing import models as billing_models      # billing record + subscription history

__all__ = [
    "accounts_models",
    "billing_models",
]
