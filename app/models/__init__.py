from app.models.user import User, UserRole
from app.models.permission import RolePermission
from app.models.token_blacklist import TokenBlacklist
from app.models.product import Product, FileType
from app.models.coupon import Coupon, DiscountType
from app.models.coupon_usage import CouponUsage
from app.models.digital_purchase import DigitalPurchase
from app.models.quote import QuoteRequest, QuoteMessage, QuoteStatus, SenderType
