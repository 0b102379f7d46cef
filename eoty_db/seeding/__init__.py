"""
Seeding

Idempotent reference-data seeds for the EOTY platform and the seeder that
runs them with production gating.
"""

from .base import Seed
from .seeder import Seeder, SeedResult, SeedUnit, load_seeds

__all__ = [
    "Seed",
    "SeedResult",
    "SeedUnit",
    "Seeder",
    "load_seeds",
]
