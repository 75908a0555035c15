from app.db.base_class import Base


# IMPORT ALL MODELS HERE (THIS REGISTERS THEM WITH Base.metadata)
from app.models.user import User
from app.models.permission import RolePermission
from app.models.token_blacklist import TokenBlacklist
from app.models.product import Product
from app.models.coupon import Coupon
from app.models.coupon_usage import CouponUsage
from app.models.digital_purchase import DigitalPurchase
from app.models.quote import QuoteRequest, QuoteMessage
