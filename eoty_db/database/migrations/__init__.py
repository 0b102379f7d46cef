"""
Incremental Schema Migration Engine

- Versioned unit files (001_core_schema.py, 20251125000000_auth_compat_views.py, ...)
- Migration base class with declared transactional mode
- Ledger of applied units plus an audit history
- Lock record serializing concurrent runners
- Runner with status, up/down, repair plans and repair scripts
"""

from .base import Direction, Migration, TransactionalMode
from .ledger import Ledger, LedgerEntry
from .lock import MigrationLock
from .manager import MigrationRegistry, MigrationUnit
from .runner import MigrationRunner, MigrationStatus, RepairPlan, RunResult

__all__ = [
    "Direction",
    "Ledger",
    "LedgerEntry",
    "Migration",
    "MigrationLock",
    "MigrationRegistry",
    "MigrationRunner",
    "MigrationStatus",
    "MigrationUnit",
    "RepairPlan",
    "RunResult",
    "TransactionalMode",
]
