from .local_store import LocalStoreEntry
from .entities import (
    AppState,
    MovementType,
    Order,
    OrderStatus,
    PaymentMethod,
    Product,
    Sale,
    SaleItem,
    SaleStatus,
    StockMovement,
    StoreSettings,
    new_id,
)

__all__ = [
    'LocalStoreEntry',
    'AppState', 'MovementType', 'Order', 'OrderStatus', 'PaymentMethod',
    'Product', 'Sale', 'SaleItem', 'SaleStatus', 'StockMovement', 'StoreSettings',
    'new_id',
]
