"""
Invoice Import Service

High-level service that turns an electronic invoice upload into a purchase.
Provides a clean API for:
- Previewing an upload (validation, duplicate warning, projected purchase)
- Importing an upload atomically (supplier, products, purchase and lines)
"""

import logging
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from einvex.config.einvex_config import EinvexConfig
from einvex.context import UserContext
from einvex.db.connection import Database
from einvex.db.models import Product, Purchase, Supplier
from einvex.db.repository import ProductRepository, PurchaseRepository, SupplierRepository
from einvex.exceptions import (
    DuplicateInvoiceError,
    EinvexError,
    InvoiceImportError,
    InvoiceValidationError,
)
from einvex.models.invoice import (
    DuplicateInfo,
    ImportOptions,
    ImportProjection,
    ImportResult,
    ImportSummary,
    InvoiceItem,
    NormalizedInvoice,
    PreviewResult,
    ProjectedLine,
    PurchaseLineView,
    PurchaseView,
)
from einvex.processors.invoice.pipeline import InvoicePipeline

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')


@dataclass
class PlannedLine:
    """One invoice line resolved against the catalogue"""
    index: int
    item: InvoiceItem
    sale_price: Decimal
    product: Optional[Product] = None
    creates_product: bool = False
    pending_key: Optional[str] = None


@dataclass
class ImportPlan:
    """Read-only resolution of an import: what exists and what would be created"""
    supplier: Optional[Supplier]
    supplier_name: str
    lines: List[PlannedLine] = field(default_factory=list)
    subtotal: Decimal = Decimal('0')
    tax_amount: Decimal = Decimal('0')
    total_amount: Decimal = Decimal('0')


class InvoiceImportService:
    """
    Service for importing electronic invoices as purchases.

    Features:
    - Duplicate detection per tenant and external invoice number
    - Supplier resolution by tax identifier or name, created when missing
    - Product matching by SKU or name, created with cost and margin pricing
    - All writes of one import in one transaction; any failure leaves no rows

    Usage:
        service = InvoiceImportService(db)

        preview = service.preview(zip_bytes, user, options)
        if preview.is_valid:
            result = service.import_invoice(zip_bytes, user, options)
    """

    def __init__(
        self,
        db: Database,
        config: Optional[EinvexConfig] = None,
        pipeline: Optional[InvoicePipeline] = None
    ):
        """
        Initialize the import service.

        Args:
            db: Database instance
            config: Optional configuration (global configuration if omitted)
            pipeline: Optional parsing pipeline
        """
        self.db = db
        self.config = config or EinvexConfig()
        self.pipeline = pipeline or InvoicePipeline(self.config)

        self.default_profit_margin = self.config.get_decimal('import.default_profit_margin', 30)
        self.sale_price_decimals = int(self.config.get('import.sale_price_decimals', 0))
        self.purchase_number_prefix = self.config.get('import.purchase_number_prefix', 'PC')
        self.default_supplier_name = self.config.get('import.default_supplier_name', 'Imported supplier')
        self.default_supplier_country = self.config.get('import.default_supplier_country')
        self.default_unit_of_measure = self.config.get('import.default_unit_of_measure', 'unit')
        self.default_min_stock = self.config.get_decimal('import.default_min_stock', 1)

    def default_options(self) -> ImportOptions:
        return ImportOptions(profit_margin=self.default_profit_margin)

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    def preview(
        self,
        data: bytes,
        user: UserContext,
        options: Optional[ImportOptions] = None
    ) -> PreviewResult:
        """
        Parse an upload and describe what importing it would do, without writing.

        Args:
            data: Compressed upload bytes
            user: Requesting user and tenant
            options: Import options used for the projection

        Returns:
            PreviewResult

        Raises:
            ExtractionError, MalformedDocumentError, EnvelopeUnwrapError: Upload unreadable
        """
        options = options or self.default_options()
        parsed = self.pipeline.parse_upload(data)
        invoice = parsed.invoice
        errors = list(parsed.validation.errors)

        duplicate = None
        projection = None
        with self.db.session() as session:
            if invoice.invoice.number:
                duplicate = self.check_duplicate(session, user.tenant_id, invoice.invoice.number)
            if parsed.validation.valid:
                try:
                    plan = self._plan(session, invoice, user, options)
                    projection = self._projection(plan, options)
                except InvoiceValidationError as e:
                    errors.extend(e.errors)
            session.rollback()

        is_duplicate = duplicate is not None
        if is_duplicate:
            logger.info(f"Preview: invoice {invoice.invoice.number} already imported as {duplicate.purchase_number}")

        return PreviewResult(
            is_valid=not errors and not is_duplicate,
            errors=errors,
            invoice=invoice,
            dialect=parsed.dialect,
            has_rendering=parsed.has_rendering,
            is_duplicate=is_duplicate,
            duplicate_info=duplicate,
            projection=projection
        )

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_invoice(
        self,
        data: bytes,
        user: UserContext,
        options: Optional[ImportOptions] = None
    ) -> ImportResult:
        """
        Parse and import an upload as one atomic unit.

        Raises:
            ExtractionError, MalformedDocumentError, EnvelopeUnwrapError: Upload unreadable
            InvoiceValidationError: Invoice incomplete, or every line excluded
            DuplicateInvoiceError: Invoice number already imported for the tenant
            InvoiceImportError: Any other failure, after full rollback
        """
        parsed = self.pipeline.parse_upload(data)
        if not parsed.validation.valid:
            raise InvoiceValidationError(parsed.validation.errors)
        return self.import_normalized(parsed.invoice, user, options)

    def import_normalized(
        self,
        invoice: NormalizedInvoice,
        user: UserContext,
        options: Optional[ImportOptions] = None
    ) -> ImportResult:
        """Import an already parsed invoice"""
        options = options or self.default_options()
        validation = self.pipeline.validator.validate(invoice)
        if not validation.valid:
            raise InvoiceValidationError(validation.errors)

        number = invoice.invoice.number
        try:
            with self.db.transaction() as session:
                result = self._execute(session, invoice, user, options)
        except IntegrityError as e:
            # A concurrent import may have committed the same invoice number first
            existing = self._load_duplicate(user.tenant_id, number)
            if existing is not None:
                logger.warning(f"Invoice {number} was imported concurrently as {existing.purchase_number}")
                raise DuplicateInvoiceError(number, existing) from e
            logger.exception(f"Import of invoice {number} rolled back")
            raise InvoiceImportError('persist', 'database constraint violated', cause=e) from e
        except (DuplicateInvoiceError, InvoiceValidationError):
            raise
        except InvoiceImportError:
            logger.exception(f"Import of invoice {number} rolled back")
            raise
        except Exception as e:
            logger.exception(f"Import of invoice {number} rolled back")
            raise InvoiceImportError('commit', str(e), cause=e) from e

        logger.info(
            f"Imported invoice {number} as {result.purchase.purchase_number}: "
            f"{result.summary.items_count} items, {result.summary.new_products_created} new products"
        )
        return result

    @contextmanager
    def _step(self, name: str, item_index: Optional[int] = None):
        """Attach the step (and line) to any unexpected failure"""
        try:
            yield
        except (EinvexError, IntegrityError):
            raise
        except Exception as e:
            raise InvoiceImportError(name, str(e), item_index=item_index, cause=e) from e

    def _execute(
        self,
        session: Session,
        invoice: NormalizedInvoice,
        user: UserContext,
        options: ImportOptions
    ) -> ImportResult:
        number = invoice.invoice.number

        with self._step('duplicate_check'):
            existing = self.check_duplicate(session, user.tenant_id, number)
        if existing is not None:
            logger.info(f"Invoice {number} already imported as {existing.purchase_number}")
            raise DuplicateInvoiceError(number, existing)

        with self._step('plan'):
            plan = self._plan(session, invoice, user, options)

        with self._step('resolve_supplier'):
            supplier = self._materialize_supplier(session, plan, invoice, user)

        products = ProductRepository(session, user.tenant_id)
        created: Dict[str, Product] = {}
        reserved: Set[str] = set()
        new_products = 0
        for line in plan.lines:
            with self._step('materialize_items', item_index=line.index):
                if line.item.quantity <= 0:
                    raise ValueError(f"quantity must be positive, got {line.item.quantity}")
                if line.product is None:
                    if line.pending_key in created:
                        line.product = created[line.pending_key]
                    else:
                        line.product = self._create_product(products, line, options, reserved)
                        created[line.pending_key] = line.product
                        new_products += 1

        purchases = PurchaseRepository(session, user.tenant_id)
        with self._step('create_purchase'):
            today = date.today()
            purchase_date = invoice.invoice.issue_date or today
            purchase = purchases.create({
                'purchase_number': purchases.next_purchase_number(self.purchase_number_prefix, today.year),
                'invoice_number': number,
                'supplier_id': supplier.id,
                'created_by': user.user_id,
                'purchase_date': purchase_date,
                'expected_date': invoice.invoice.due_date or purchase_date,
                'status': 'draft',
                'subtotal': plan.subtotal,
                'tax_amount': plan.tax_amount,
                'shipping_cost': options.shipping_cost,
                'discount_amount': options.discount_amount,
                'total_amount': plan.total_amount,
                'notes': f"Imported from electronic invoice {number}",
            })

        for position, line in enumerate(plan.lines):
            with self._step('create_purchase_items', item_index=line.index):
                purchases.add_item(purchase, {
                    'position': position,
                    'product_id': line.product.id,
                    'product_name': line.product.name,
                    'product_sku': line.product.sku,
                    'quantity': line.item.quantity,
                    'unit_cost': line.item.unit_price,
                    'sale_price': line.sale_price,
                    'tax_percentage': line.item.tax_percentage,
                    'tax_amount': line.item.tax_amount,
                    'subtotal': line.item.subtotal,
                    'total': line.item.total,
                })

        logger.info(f"Created purchase {purchase.purchase_number} for invoice {number}")
        return ImportResult(
            purchase=self._purchase_view(purchase, supplier),
            summary=ImportSummary(
                supplier=supplier.name,
                invoice_number=number,
                items_count=len(plan.lines),
                new_products_created=new_products,
                total_amount=purchase.total_amount
            )
        )

    # ------------------------------------------------------------------
    # Duplicate detection
    # ------------------------------------------------------------------

    def check_duplicate(self, session: Session, tenant_id: str, invoice_number: str) -> Optional[DuplicateInfo]:
        """
        Summary of the purchase already holding this invoice number, if any.

        Runs on the caller's session so that the check and the writes that
        follow share one transaction.
        """
        purchase = PurchaseRepository(session, tenant_id).get_by_invoice_number(invoice_number)
        if purchase is None:
            return None
        return self._duplicate_info(purchase)

    def _load_duplicate(self, tenant_id: str, invoice_number: str) -> Optional[DuplicateInfo]:
        with self.db.session() as session:
            purchase = PurchaseRepository(session, tenant_id).get_by_invoice_number(invoice_number)
            return self._duplicate_info(purchase) if purchase is not None else None

    def _duplicate_info(self, purchase: Purchase) -> DuplicateInfo:
        return DuplicateInfo(
            purchase_id=purchase.id,
            purchase_number=purchase.purchase_number,
            invoice_number=purchase.invoice_number,
            supplier_name=purchase.supplier.name if purchase.supplier else None,
            total_amount=purchase.total_amount,
            status=purchase.status,
            created_at=purchase.created_at
        )

    # ------------------------------------------------------------------
    # Planning (shared by preview and import, never writes)
    # ------------------------------------------------------------------

    def _plan(
        self,
        session: Session,
        invoice: NormalizedInvoice,
        user: UserContext,
        options: ImportOptions
    ) -> ImportPlan:
        suppliers = SupplierRepository(session, user.tenant_id)
        products = ProductRepository(session, user.tenant_id)

        supplier_name = options.supplier_name or invoice.supplier.name or self.default_supplier_name
        supplier = None
        if invoice.supplier.tax_id:
            supplier = suppliers.get_by_tax_id(invoice.supplier.tax_id)
        else:
            supplier = suppliers.get_by_name(supplier_name)
        if supplier is not None:
            supplier_name = supplier.name
            logger.debug(f"Supplier matched: {supplier.id}")

        kept = self._apply_exclusions(invoice, options.removed_items)

        plan = ImportPlan(supplier=supplier, supplier_name=supplier_name)
        pending_by_sku: Dict[str, str] = {}
        pending_by_name: Dict[str, str] = {}
        for index, item in kept:
            line = PlannedLine(
                index=index,
                item=item,
                sale_price=self.sale_price(item.unit_price, options.profit_margin)
            )

            name_key = item.name.strip().lower()
            if not item.sku_synthesized:
                line.product = products.get_by_sku(item.sku)
                if line.product is None and item.sku in pending_by_sku:
                    line.pending_key = pending_by_sku[item.sku]
            if line.product is None and line.pending_key is None:
                line.product = products.get_by_name(item.name)
                if line.product is None and name_key in pending_by_name:
                    line.pending_key = pending_by_name[name_key]

            if line.product is None and line.pending_key is None:
                line.pending_key = f"line-{index}"
                line.creates_product = True
                if not item.sku_synthesized:
                    pending_by_sku[item.sku] = line.pending_key
                pending_by_name[name_key] = line.pending_key

            plan.lines.append(line)
            plan.subtotal += item.subtotal
            plan.tax_amount += item.tax_amount

        plan.total_amount = plan.subtotal + plan.tax_amount + options.shipping_cost - options.discount_amount
        return plan

    def _apply_exclusions(self, invoice: NormalizedInvoice, removed_items: List[int]):
        """Drop excluded positions, keeping the original order of the rest"""
        count = len(invoice.items)
        removed = set()
        for index in removed_items:
            if 0 <= index < count:
                removed.add(index)
            else:
                logger.warning(f"Ignoring exclusion of line {index}: invoice has {count} lines")

        kept = [(i, item) for i, item in enumerate(invoice.items) if i not in removed]
        if not kept:
            raise InvoiceValidationError(['All line items were excluded'])
        if removed:
            logger.info(f"Excluded lines {sorted(removed)}")
        return kept

    def sale_price(self, cost: Decimal, margin: Decimal) -> Decimal:
        """cost x (1 + margin/100), rounded to the configured decimals"""
        exponent = Decimal(1).scaleb(-self.sale_price_decimals)
        try:
            return (cost * (1 + margin / HUNDRED)).quantize(exponent, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise InvoiceValidationError([f"Sale price out of range for cost {cost} and margin {margin}%"])

    def _projection(self, plan: ImportPlan, options: ImportOptions) -> ImportProjection:
        lines = []
        for line in plan.lines:
            lines.append(ProjectedLine(
                index=line.index,
                name=line.item.name,
                sku=line.item.sku,
                product_id=line.product.id if line.product else None,
                product_name=line.product.name if line.product else None,
                product_sku=line.product.sku if line.product else None,
                is_new=line.creates_product,
                quantity=line.item.quantity,
                unit_cost=line.item.unit_price,
                sale_price=line.sale_price,
                tax_percentage=line.item.tax_percentage,
                tax_amount=line.item.tax_amount,
                subtotal=line.item.subtotal,
                total=line.item.total
            ))
        return ImportProjection(
            supplier_id=plan.supplier.id if plan.supplier else None,
            supplier_name=plan.supplier_name,
            supplier_exists=plan.supplier is not None,
            lines=lines,
            subtotal=plan.subtotal,
            tax_amount=plan.tax_amount,
            shipping_cost=options.shipping_cost,
            discount_amount=options.discount_amount,
            total_amount=plan.total_amount
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _materialize_supplier(
        self,
        session: Session,
        plan: ImportPlan,
        invoice: NormalizedInvoice,
        user: UserContext
    ) -> Supplier:
        extracted = invoice.supplier
        if plan.supplier is not None:
            supplier = plan.supplier
            refreshed = []
            for attr in ('email', 'phone', 'address'):
                value = getattr(extracted, attr)
                if value and getattr(supplier, attr) != value:
                    setattr(supplier, attr, value)
                    refreshed.append(attr)
            if refreshed:
                session.flush()
                logger.info(f"Refreshed supplier {supplier.id} contact fields: {refreshed}")
            else:
                logger.info(f"Using existing supplier {supplier.id}")
            return supplier

        supplier = SupplierRepository(session, user.tenant_id).create({
            'tax_id': extracted.tax_id,
            'name': plan.supplier_name,
            'business_name': extracted.name or plan.supplier_name,
            'email': extracted.email,
            'phone': extracted.phone,
            'address': extracted.address,
            'country': self.default_supplier_country,
            'is_active': True,
        })
        logger.info(f"Created supplier {supplier.id} ({supplier.name})")
        return supplier

    def _create_product(
        self,
        products: ProductRepository,
        line: PlannedLine,
        options: ImportOptions,
        reserved: Set[str]
    ) -> Product:
        item = line.item
        if item.sku_synthesized or products.sku_exists(item.sku):
            sku = self.generate_sku(products, item.name, reserved)
        else:
            sku = item.sku
        reserved.add(sku)

        product = products.create({
            'name': item.name,
            'sku': sku,
            'barcode': sku,
            'unit_of_measure': self.default_unit_of_measure,
            'average_cost': item.unit_price,
            'base_price': line.sale_price,
            'profit_margin_percentage': options.profit_margin,
            'current_stock': Decimal('0'),
            'min_stock': self.default_min_stock,
            'track_inventory': True,
            'is_active': True,
            'has_tax': item.tax_percentage > 0,
            'tax_percentage': item.tax_percentage,
            'price_includes_tax': False,
        })
        logger.debug(f"Created product {product.id} ({sku}) for line {line.index}")
        return product

    def generate_sku(self, products: ProductRepository, name: str, reserved: Set[str]) -> str:
        """
        Unique SKU for a product whose line had no identifier.

        Format ``<NAME3>-<NNNNNN>``: three letters of the name and the last six
        digits of the current millisecond clock, with a counter on collision.
        """
        letters = re.sub(r'[^A-Za-z0-9]', '', name).upper()[:3] or 'PRD'
        stamp = str(int(time.time() * 1000))[-6:]
        sku = f"{letters}-{stamp}"
        counter = 1
        while sku in reserved or products.sku_exists(sku):
            sku = f"{letters}-{stamp}-{counter}"
            counter += 1
        return sku

    def _purchase_view(self, purchase: Purchase, supplier: Supplier) -> PurchaseView:
        return PurchaseView(
            id=purchase.id,
            tenant_id=purchase.tenant_id,
            purchase_number=purchase.purchase_number,
            invoice_number=purchase.invoice_number,
            supplier_id=supplier.id,
            supplier_name=supplier.name,
            purchase_date=purchase.purchase_date,
            expected_date=purchase.expected_date,
            status=purchase.status,
            subtotal=purchase.subtotal,
            tax_amount=purchase.tax_amount,
            shipping_cost=purchase.shipping_cost,
            discount_amount=purchase.discount_amount,
            total_amount=purchase.total_amount,
            created_by=purchase.created_by,
            items=[
                PurchaseLineView(
                    position=item.position,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    product_sku=item.product_sku,
                    quantity=item.quantity,
                    unit_cost=item.unit_cost,
                    sale_price=item.sale_price,
                    tax_percentage=item.tax_percentage,
                    tax_amount=item.tax_amount,
                    subtotal=item.subtotal,
                    total=item.total
                )
                for item in purchase.items
            ]
        )
