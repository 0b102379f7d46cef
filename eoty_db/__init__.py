"""
EOTY DB

Incremental, idempotent schema evolution for the EOTY platform database:
migration registry, ledger, lock, runner, seeder and command line tools.
"""

__version__ = "1.0.0"
__author__ = "EOTY Platform Team"
