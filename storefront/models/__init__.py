from storefront.models.user import User, UserRole
from storefront.models.category import Category
from storefront.models.product import Product
from storefront.models.cart import CartItem
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.order_status_history import OrderStatusHistory
from storefront.models.checkout_attempt import CheckoutAttempt, CheckoutState
from storefront.models.store_setting import StoreSetting
