"""
HERA Finance Engine - Master Data Lookup

Opaque access to the master records (payment methods, customers, vendors,
products, tax codes) that posting recipes read accounts from.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


class MasterDataLookup(ABC):
    """Returns the attributes of a referenced master record, or None when it does not exist."""

    @abstractmethod
    async def get_record(self, organization_id: str, reference: str) -> Optional[Mapping[str, Any]]:
        """Look up `reference` (e.g. PAYMENT:card, VENDOR:V-001) for the organization."""
        pass


class InMemoryMasterDataLookup(MasterDataLookup):
    """
    Master data held in memory, keyed by organization then reference.

    Records under the "*" organization are shared by every tenant; an
    organization's own record wins over the shared one.
    """

    SHARED = "*"

    def __init__(self, records: Optional[Dict[str, Dict[str, Mapping[str, Any]]]] = None):
        self._records: Dict[str, Dict[str, Mapping[str, Any]]] = {
            organization_id: dict(org_records)
            for organization_id, org_records in (records or {}).items()
        }
        self.lookups = 0

    def put(self, organization_id: str, reference: str, record: Mapping[str, Any]) -> None:
        self._records.setdefault(organization_id, {})[reference] = dict(record)

    async def get_record(self, organization_id: str, reference: str) -> Optional[Mapping[str, Any]]:
        self.lookups += 1
        record = self._records.get(organization_id, {}).get(reference)
        if record is None:
            record = self._records.get(self.SHARED, {}).get(reference)
        if record is None:
            logger.debug(f"No master record {reference} for org {organization_id}")
        return record
