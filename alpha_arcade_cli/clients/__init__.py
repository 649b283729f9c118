"""Client wrappers for the Algorand ledger and the Alpha partners API."""

from .algorand import AlgorandClient, GroupSubmitter
from .alpha_api import AlphaApiClient, AlphaApiError
from .ledger import LedgerClient, SettlementBundle
from .submitter import AlgosdkSubmitter, build_submitter

__all__ = [
    "AlgorandClient",
    "AlgosdkSubmitter",
    "GroupSubmitter",
    "AlphaApiClient",
    "AlphaApiError",
    "LedgerClient",
    "SettlementBundle",
    "build_submitter",
]
