"""
settlement_services -- orchestration over the settlement kernel and engines.

Usage:
    from settlement_services import SettlementPersister
"""

from settlement_services.settlement_persister import SettlementPersister

__all__ = ["SettlementPersister"]
