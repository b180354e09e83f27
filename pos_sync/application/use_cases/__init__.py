"""Re-exports of the domain mutation use cases, one class per aggregate."""

from pos_sync.application.use_cases.mutations import MutationExecutor, MutationScope
from pos_sync.application.use_cases.products import ProductUseCases
from pos_sync.application.use_cases.sales import SaleUseCases
from pos_sync.application.use_cases.session import SessionUseCases, require_permission
from pos_sync.application.use_cases.settings import SettingsUseCases
from pos_sync.application.use_cases.shifts import ShiftUseCases
from pos_sync.application.use_cases.stock_requests import StockRequestUseCases
from pos_sync.application.use_cases.users import UserUseCases
from pos_sync.application.use_cases.voids import VoidUseCases

__all__ = [
    "MutationExecutor",
    "MutationScope",
    "ProductUseCases",
    "SaleUseCases",
    "SessionUseCases",
    "SettingsUseCases",
    "ShiftUseCases",
    "StockRequestUseCases",
    "UserUseCases",
    "VoidUseCases",
    "require_permission",
]
