from __future__ import annotations

from fastapi import Depends

from shop_erp_core.db import get_store
from shop_erp_core.feasibility import FeasibilityChecker
from shop_erp_core.ledger import StockLedger
from shop_erp_core.orders import OrderService
from shop_erp_core.production import ConsumptionEngine, ProductionLogService
from shop_erp_core.recipes import RecipeResolver
from shop_erp_core.row_store import RowStore
from shop_erp_core.sellers import SellerLedger


def get_ledger(store: RowStore = Depends(get_store)) -> StockLedger:
    return StockLedger(store)


def get_resolver(store: RowStore = Depends(get_store)) -> RecipeResolver:
    return RecipeResolver(store)


def get_checker(store: RowStore = Depends(get_store)) -> FeasibilityChecker:
    return FeasibilityChecker(store)


def get_orders(store: RowStore = Depends(get_store)) -> OrderService:
    return OrderService(store)


def get_production_logs(store: RowStore = Depends(get_store)) -> ProductionLogService:
    ledger = StockLedger(store)
    return ProductionLogService(store, ConsumptionEngine(ledger), OrderService(store))


def get_sellers(store: RowStore = Depends(get_store)) -> SellerLedger:
    return SellerLedger(store)
