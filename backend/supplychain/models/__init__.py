from .organizations import Organization, ShopDistributor, User, SessionToken
from .catalog import Product, ProductVariant
from .orders import Order, OrderItem, QRBatch, QRCode
from .documents import Document, DocumentSequence, WorkflowEvent
from .inventory import (
    StockMovement,
    InventoryPosition,
    StockTransfer,
    StockTransferLine,
    AdjustmentReason,
)

__all__ = [
    'Organization', 'ShopDistributor', 'User', 'SessionToken',
    'Product', 'ProductVariant',
    'Order', 'OrderItem', 'QRBatch', 'QRCode',
    'Document', 'DocumentSequence', 'WorkflowEvent',
    'StockMovement', 'InventoryPosition', 'StockTransfer', 'StockTransferLine',
    'AdjustmentReason',
]
