# backend/bizdb/__init__.py
"""
Import ORM models from each app so that Base.metadata.create_all() sees all
tables. The model classes live in bizdb/apps/*/models.py.
"""

from .apps.companies import models as companies_models      # tenants
from .apps.ledger import models as ledger_models            # ledger entries
from .apps.inventory import models as inventory_models      # products
from .apps.orders import models as orders_models            # orders + items + sequences
from .apps.finance import models as finance_models          # accounts, transactions, transfers
from .apps.audit import models as audit_models              # audit trail

__all__ = [
    "companies_models",
    "ledger_models",
    "inventory_models",
    "orders_models",
    "finance_models",
    "audit_models",
]
