from .locations import Location, LocationKind, Warehouse, Outlet
from .inventory import Product, StockLot, StockMovement
from .customers import Customer
from .sales import Sale, SaleLine, SaleLineAllocation, SalePayment, SaleReturn, SaleReturnLine
from .sequences import SequenceCounter
from .demand import Demand

__all__ = [
    'Location', 'LocationKind', 'Warehouse', 'Outlet',
    'Product', 'StockLot', 'StockMovement',
    'Customer',
    'Sale', 'SaleLine', 'SaleLineAllocation', 'SalePayment', 'SaleReturn', 'SaleReturnLine',
    'SequenceCounter',
    'Demand',
]
