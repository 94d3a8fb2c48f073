# Services module

from bakehouse.services.catalog import CatalogService
from bakehouse.services.stock_ledger import StockLedgerService, to_quantity
from bakehouse.services.availability import AvailabilityCalculator
from bakehouse.services.transfer_requests import TransferRequestService
from bakehouse.services.approval import ApprovalEngine, aggregate_demand

__all__ = [
    "CatalogService",
    "StockLedgerService",
    "to_quantity",
    "AvailabilityCalculator",
    "TransferRequestService",
    "ApprovalEngine",
    "aggregate_demand",
]
