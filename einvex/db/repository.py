from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import Supplier, Product, Purchase, PurchaseItem
from .connection import Base

T = TypeVar('T', bound=Base)


class BaseRepository(Generic[T]):
    """
    Base repository class for common tenant-scoped database operations

    Repositories never commit: they work on the caller's session so that all
    reads and writes of one import share one transaction.
    """

    def __init__(self, model_class: Type[T], session: Session, tenant_id: str):
        self.model_class = model_class
        self.session = session
        self.tenant_id = tenant_id

    def create(self, data: Dict[str, Any]) -> T:
        """Add a new record and flush it so generated values are available"""
        instance = self.model_class(tenant_id=self.tenant_id, **data)
        self.session.add(instance)
        self.session.flush()
        return instance

    def get(self, id: str) -> Optional[T]:
        """Get a record by ID within the tenant"""
        instance = self.session.get(self.model_class, id)
        if instance is None or instance.tenant_id != self.tenant_id:
            return None
        return instance

    def list(self, **filters) -> List[T]:
        """List records with optional equality filters"""
        stmt = select(self.model_class).where(self.model_class.tenant_id == self.tenant_id)
        for key, value in filters.items():
            stmt = stmt.where(getattr(self.model_class, key) == value)
        return list(self.session.execute(stmt).scalars())

    def _first_by_name(self, name: str) -> Optional[T]:
        stmt = (
            select(self.model_class)
            .where(
                self.model_class.tenant_id == self.tenant_id,
                func.lower(self.model_class.name) == name.strip().lower()
            )
            .order_by(self.model_class.created_at)
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()


class SupplierRepository(BaseRepository[Supplier]):
    """Repository for suppliers"""

    def __init__(self, session: Session, tenant_id: str):
        super().__init__(Supplier, session, tenant_id)

    def get_by_tax_id(self, tax_id: str) -> Optional[Supplier]:
        stmt = select(Supplier).where(
            Supplier.tenant_id == self.tenant_id,
            Supplier.tax_id == tax_id
        )
        return self.session.execute(stmt).scalars().first()

    def get_by_name(self, name: str) -> Optional[Supplier]:
        """Case-insensitive exact name match"""
        return self._first_by_name(name)


class ProductRepository(BaseRepository[Product]):
    """Repository for products"""

    def __init__(self, session: Session, tenant_id: str):
        super().__init__(Product, session, tenant_id)

    def get_by_sku(self, sku: str) -> Optional[Product]:
        stmt = select(Product).where(
            Product.tenant_id == self.tenant_id,
            Product.sku == sku
        )
        return self.session.execute(stmt).scalars().first()

    def get_by_name(self, name: str) -> Optional[Product]:
        """Case-insensitive exact name match"""
        return self._first_by_name(name)

    def sku_exists(self, sku: str) -> bool:
        return self.get_by_sku(sku) is not None


class PurchaseRepository(BaseRepository[Purchase]):
    """Repository for purchases and their lines"""

    def __init__(self, session: Session, tenant_id: str):
        super().__init__(Purchase, session, tenant_id)

    def get_by_invoice_number(self, invoice_number: str) -> Optional[Purchase]:
        stmt = select(Purchase).where(
            Purchase.tenant_id == self.tenant_id,
            Purchase.invoice_number == invoice_number
        )
        return self.session.execute(stmt).scalars().first()

    def next_purchase_number(self, prefix: str, year: int) -> str:
        """
        Next sequential purchase number for the tenant and year.

        Numbers look like ``PC-2024-0007``.
        """
        stem = f"{prefix}-{year}-"
        stmt = select(Purchase.purchase_number).where(
            Purchase.tenant_id == self.tenant_id,
            Purchase.purchase_number.like(f"{stem}%")
        )
        highest = 0
        for number in self.session.execute(stmt).scalars():
            suffix = number[len(stem):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{stem}{highest + 1:04d}"

    def add_item(self, purchase: Purchase, data: Dict[str, Any]) -> PurchaseItem:
        item = PurchaseItem(**data)
        purchase.items.append(item)
        self.session.flush()
        return item

    def count(self) -> int:
        stmt = select(func.count()).select_from(Purchase).where(Purchase.tenant_id == self.tenant_id)
        return self.session.execute(stmt).scalar_one()
