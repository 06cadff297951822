from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Date, DateTime, Numeric, ForeignKey, Text, Boolean,
    UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from einvex.db.connection import get_base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_id(model_class=None) -> str:
    """Generate a unique ID for a model"""
    if model_class is None:
        return str(uuid4())

    # Map model classes to their three-letter prefixes
    prefix_map = {
        'Supplier': 'sup',
        'Product': 'prd',
        'Purchase': 'pur',
        'PurchaseItem': 'pit',
    }
    prefix = prefix_map.get(model_class.__name__, '')
    return f"{prefix}_{uuid4().hex}"


# Money columns keep two decimals; quantities allow fractional units
Money = Numeric(18, 2)
Quantity = Numeric(18, 4)

# Get base class from connection
Base = get_base()


class Supplier(Base):
    """
    Model for suppliers

    A tax identifier identifies at most one supplier within a tenant.
    """
    __tablename__ = 'supplier'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'tax_id', name='uq_supplier_tenant_tax_id'),
        Index('ix_supplier_tenant_name', 'tenant_id', 'name'),
    )

    id = Column(String(36), primary_key=True, default=lambda: generate_id(Supplier))
    tenant_id = Column(String(64), nullable=False, index=True)
    tax_id = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    business_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    address = Column(Text, nullable=True)
    country = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    purchases = relationship('Purchase', back_populates='supplier')


class Product(Base):
    """Model for inventory products"""
    __tablename__ = 'product'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'sku', name='uq_product_tenant_sku'),
        Index('ix_product_tenant_name', 'tenant_id', 'name'),
    )

    id = Column(String(36), primary_key=True, default=lambda: generate_id(Product))
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=False)
    barcode = Column(String(100), nullable=True)
    unit_of_measure = Column(String(50), nullable=False, default='unit')
    average_cost = Column(Money, nullable=False, default=0)
    base_price = Column(Money, nullable=False, default=0)
    profit_margin_percentage = Column(Numeric(9, 2), nullable=True)
    current_stock = Column(Quantity, nullable=False, default=0)
    min_stock = Column(Quantity, nullable=False, default=0)
    track_inventory = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    has_tax = Column(Boolean, nullable=False, default=False)
    tax_percentage = Column(Numeric(9, 2), nullable=False, default=0)
    price_includes_tax = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Purchase(Base):
    """
    Model for purchase headers

    ``(tenant_id, invoice_number)`` is unique and backs up the duplicate check
    made before any write.
    """
    __tablename__ = 'purchase'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'purchase_number', name='uq_purchase_tenant_number'),
        UniqueConstraint('tenant_id', 'invoice_number', name='uq_purchase_tenant_invoice'),
    )

    id = Column(String(36), primary_key=True, default=lambda: generate_id(Purchase))
    tenant_id = Column(String(64), nullable=False, index=True)
    purchase_number = Column(String(50), nullable=False)
    invoice_number = Column(String(100), nullable=True)
    supplier_id = Column(String(36), ForeignKey('supplier.id'), nullable=False)
    created_by = Column(String(64), nullable=True)
    purchase_date = Column(Date, nullable=True)
    expected_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default='draft')
    subtotal = Column(Money, nullable=False, default=0)
    tax_amount = Column(Money, nullable=False, default=0)
    discount_amount = Column(Money, nullable=False, default=0)
    shipping_cost = Column(Money, nullable=False, default=0)
    total_amount = Column(Money, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    supplier = relationship('Supplier', back_populates='purchases')
    items = relationship(
        'PurchaseItem',
        back_populates='purchase',
        cascade='all, delete-orphan',
        order_by='PurchaseItem.position'
    )


class PurchaseItem(Base):
    """One ordered purchase line"""
    __tablename__ = 'purchase_item'

    id = Column(String(36), primary_key=True, default=lambda: generate_id(PurchaseItem))
    purchase_id = Column(String(36), ForeignKey('purchase.id', ondelete='CASCADE'), nullable=False)
    position = Column(Integer, nullable=False)
    product_id = Column(String(36), ForeignKey('product.id'), nullable=False)
    product_name = Column(String(255), nullable=False)
    product_sku = Column(String(100), nullable=False)
    quantity = Column(Quantity, nullable=False)
    unit_cost = Column(Money, nullable=False)
    sale_price = Column(Money, nullable=False)
    tax_percentage = Column(Numeric(9, 2), nullable=False, default=0)
    tax_amount = Column(Money, nullable=False, default=0)
    subtotal = Column(Money, nullable=False, default=0)
    total = Column(Money, nullable=False, default=0)

    # Relationships
    purchase = relationship('Purchase', back_populates='items')
    product = relationship('Product')
