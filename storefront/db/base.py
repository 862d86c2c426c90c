from storefront.db.base_class import Base


# IMPORT ALL MODELS HERE (THIS REGISTERS THEM WITH Base.metadata)
from storefront.models.user import User
from storefront.models.category import Category
from storefront.models.product import Product
from storefront.models.cart import CartItem
from storefront.models.order import Order, OrderItem
from storefront.models.order_status_history import OrderStatusHistory
from storefront.models.checkout_attempt import CheckoutAttempt
from storefront.models.store_setting import StoreSetting
