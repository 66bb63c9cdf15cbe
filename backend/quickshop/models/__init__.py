from .catalog import Category, Product
from .auth import User, SessionToken
from .cart import CartItemRecord
from .orders import Order, OrderItem, OrderCancellation, PaymentLog

__all__ = [
    'Category', 'Product',
    'User', 'SessionToken',
    'CartItemRecord',
    'Order', 'OrderItem', 'OrderCancellation', 'PaymentLog',
]
