"""Input records and exchange rates."""

from .records import (
    Dataset,
    Disposal,
    Grant,
    Lot,
    Transaction,
    TransactionType,
    load_dataset,
    load_grants_csv,
    load_lots_csv,
    load_transactions_csv,
)
from .exchange_rates import ExchangeRateEntry, ExchangeRateService, NationalbankenProvider

__all__ = [
    "Dataset",
    "Disposal",
    "Grant",
    "Lot",
    "Transaction",
    "TransactionType",
    "load_dataset",
    "load_grants_csv",
    "load_lots_csv",
    "load_transactions_csv",
    "ExchangeRateEntry",
    "ExchangeRateService",
    "NationalbankenProvider",
]
