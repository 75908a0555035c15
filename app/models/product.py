from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, Text, Index
from datetime import datetime
from app.db.base_class import Base


class FileType:
    DIGITAL = "digital"
    PHYSICAL = "physical"
    SERVICE = "service"


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(200), nullable=False, index=True)
    slug = Column(String(250), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)

    # Pricing
    price = Column(Numeric(10, 2), nullable=True)  # Null means "price on request"
    sale_price = Column(Numeric(10, 2), nullable=True)
    on_sale = Column(Boolean, default=False, nullable=False)
    currency = Column(String(3), default="EUR", nullable=False)

    # Fulfilment
    published = Column(Boolean, default=False, nullable=False)
    file_type = Column(String(20), nullable=True)
    file_url = Column(String(500), nullable=True)  # Never exposed to buyers
    file_name = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def effective_price(self):
        """Sale price while on sale, otherwise the list price (None when unpriced)."""
        if self.on_sale and self.sale_price:
            return self.sale_price
        return self.price or None


Index('idx_product_published_type', Product.published, Product.file_type)
