"""
Services package for settlement business logic.

This package contains the settlement computation engine, its building
blocks (name and rate resolution, specialty rules, deduplication,
aggregation) and the persistence service used by the API.

Modules are imported directly (e.g. ``from services.settlement_engine import
SettlementEngine``); the ORM models depend on ``services.settlement_types``,
so this package keeps no eager imports.
"""
