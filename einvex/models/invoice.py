"""
Invoice Data Models with Pydantic Validation

The normalized invoice is the dialect-independent result of extraction: every
adapter produces exactly this shape, with unknown fields set to None rather
than omitted, so downstream code never branches on the source dialect.
"""

import json
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DATE_FORMATS = [
    '%Y-%m-%d',      # ISO format
    '%Y/%m/%d',
    '%d/%m/%Y',      # Day-first, as issued in the originating jurisdiction
    '%d-%m-%Y',
    '%Y%m%d',
]


# Amounts at or above this magnitude are treated as not provided
MAX_MAGNITUDE = Decimal('1e15')

_COMMA_GROUPED = re.compile(r'^[-+]?\d{1,3}(,\d{3})+$')


def _within_bounds(result: Decimal) -> Optional[Decimal]:
    if not result.is_finite() or abs(result) >= MAX_MAGNITUDE:
        return None
    return result


def _normalize_separators(cleaned: str) -> str:
    """
    Rewrite grouping and decimal separators to plain ``1234.56`` form.

    When both ',' and '.' appear, the one occurring last is the decimal
    separator (``1.234,56`` and ``1,234.56``). A lone ',' is a thousands
    separator only in strict groups of three (``1,000``); otherwise it is
    the decimal separator (``1000,50``).
    """
    if ',' in cleaned and '.' in cleaned:
        if cleaned.rfind(',') > cleaned.rfind('.'):
            return cleaned.replace('.', '').replace(',', '.')
        return cleaned.replace(',', '')
    if ',' in cleaned:
        if _COMMA_GROUPED.match(cleaned):
            return cleaned.replace(',', '')
        if cleaned.count(',') > 1:
            # Irregular grouping such as 1,00,000
            return cleaned.replace(',', '')
        return cleaned.replace(',', '.')
    return cleaned


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse a numeric value without ever raising.

    Returns None for absent or unparsable input, for NaN/Infinity and for
    magnitudes of ``MAX_MAGNITUDE`` or more. Both ``1,234.56`` and
    ``1.234,56`` read as 1234.56.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return None
        return _within_bounds(result)
    if not isinstance(value, str):
        return None

    cleaned = value.strip().replace(' ', '')
    if not cleaned:
        return None
    cleaned = _normalize_separators(cleaned)
    cleaned = re.sub(r'[^\d.\-+eE]', '', cleaned)
    try:
        result = Decimal(cleaned)
    except InvalidOperation:
        return None
    return _within_bounds(result)


def parse_date(value: Any) -> Optional[date]:
    """Parse dates from the formats seen in electronic invoices, None otherwise"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        v = value.strip()
        if not v:
            return None
        # Timestamps such as 2024-01-15T10:00:00-05:00 keep their date part
        v = v.split('T')[0]
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(v, fmt).date()
            except ValueError:
                continue
    return None


def _zero_if_missing(v: Any) -> Decimal:
    parsed = parse_decimal(v)
    return parsed if parsed is not None else Decimal('0')


class SupplierInfo(BaseModel):
    """Issuer identity as read from the document"""
    model_config = ConfigDict(str_strip_whitespace=True)

    tax_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    @field_validator('tax_id', 'name', 'email', 'phone', 'address', mode='before')
    @classmethod
    def blank_to_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class InvoiceHeader(BaseModel):
    """External document identity"""
    model_config = ConfigDict(str_strip_whitespace=True)

    number: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None

    @field_validator('number', mode='before')
    @classmethod
    def blank_number(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator('issue_date', 'due_date', mode='before')
    @classmethod
    def coerce_date(cls, v: Any) -> Optional[date]:
        return parse_date(v)


class InvoiceItem(BaseModel):
    """One normalized line item. Amounts are never None: missing numbers are zero."""

    name: str
    sku: str
    sku_synthesized: bool = False
    quantity: Decimal = Decimal('1')
    unit_price: Decimal = Decimal('0')
    tax_percentage: Decimal = Decimal('0')
    tax_amount: Decimal = Decimal('0')
    subtotal: Decimal = Decimal('0')
    total: Decimal = Decimal('0')

    @field_validator(
        'quantity', 'unit_price', 'tax_percentage', 'tax_amount', 'subtotal', 'total',
        mode='before'
    )
    @classmethod
    def coerce_amount(cls, v: Any) -> Decimal:
        return _zero_if_missing(v)


class InvoiceTotals(BaseModel):
    """
    Document totals.

    ``source`` is 'header' when the document carried aggregate totals and
    'items' when they were rebuilt from the lines. Differences between the
    header figures and the line sums are kept in ``discrepancies``.
    """

    subtotal: Decimal = Decimal('0')
    tax: Decimal = Decimal('0')
    total: Decimal = Decimal('0')
    source: str = 'items'
    discrepancies: List[str] = Field(default_factory=list)

    @field_validator('subtotal', 'tax', 'total', mode='before')
    @classmethod
    def coerce_amount(cls, v: Any) -> Decimal:
        return _zero_if_missing(v)


class NormalizedInvoice(BaseModel):
    """The dialect-independent extraction result"""

    supplier: SupplierInfo = Field(default_factory=SupplierInfo)
    invoice: InvoiceHeader = Field(default_factory=InvoiceHeader)
    items: List[InvoiceItem] = Field(default_factory=list)
    totals: InvoiceTotals = Field(default_factory=InvoiceTotals)


class ValidationResult(BaseModel):
    """Outcome of the structural completeness check"""

    valid: bool
    errors: List[str] = Field(default_factory=list)


class ImportOptions(BaseModel):
    """User-adjustable import parameters"""
    model_config = ConfigDict(str_strip_whitespace=True)

    profit_margin: Decimal = Decimal('30')
    supplier_name: Optional[str] = None
    removed_items: List[int] = Field(default_factory=list)
    shipping_cost: Decimal = Field(Decimal('0'), ge=0)
    discount_amount: Decimal = Field(Decimal('0'), ge=0)

    @field_validator('profit_margin', mode='before')
    @classmethod
    def parse_margin(cls, v: Any) -> Decimal:
        parsed = parse_decimal(v)
        return parsed if parsed is not None else Decimal('30')

    @field_validator('shipping_cost', 'discount_amount', mode='before')
    @classmethod
    def parse_money(cls, v: Any) -> Decimal:
        return _zero_if_missing(v)

    @field_validator('supplier_name', mode='before')
    @classmethod
    def blank_override(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator('removed_items', mode='before')
    @classmethod
    def parse_removed_items(cls, v: Any) -> List[int]:
        """Accept a list or a JSON-encoded array of zero-based indices"""
        if v is None or v == '':
            return []
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except ValueError:
                raise ValueError("removed_items must be a JSON array of line indices")
        if not isinstance(v, (list, tuple)):
            raise ValueError("removed_items must be a JSON array of line indices")
        return v

    @classmethod
    def from_form(cls, form: Dict[str, Any], default_profit_margin: Any = None) -> 'ImportOptions':
        """
        Build options from multipart form fields.

        Args:
            form: Raw form mapping (values are usually strings)
            default_profit_margin: Margin used when the field is absent or unparsable

        Returns:
            ImportOptions instance

        Raises:
            pydantic.ValidationError: If removed_items is not a JSON array
        """
        data = {k: form.get(k) for k in (
            'supplier_name', 'removed_items', 'shipping_cost', 'discount_amount'
        )}
        margin = parse_decimal(form.get('profit_margin'))
        if margin is None and default_profit_margin is not None:
            margin = parse_decimal(default_profit_margin)
        if margin is not None:
            data['profit_margin'] = margin
        return cls(**data)


class DuplicateInfo(BaseModel):
    """Summary of a previously imported purchase"""

    purchase_id: str
    purchase_number: str
    invoice_number: Optional[str] = None
    supplier_name: Optional[str] = None
    total_amount: Decimal
    status: Optional[str] = None
    created_at: Optional[datetime] = None


class ProjectedLine(BaseModel):
    """One line of the import plan"""

    index: int
    name: str
    sku: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    product_sku: Optional[str] = None
    is_new: bool
    quantity: Decimal
    unit_cost: Decimal
    sale_price: Decimal
    tax_percentage: Decimal
    tax_amount: Decimal
    subtotal: Decimal
    total: Decimal


class ImportProjection(BaseModel):
    """Read-only projection of what an import would create"""

    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_exists: bool = False
    lines: List[ProjectedLine] = Field(default_factory=list)
    subtotal: Decimal = Decimal('0')
    tax_amount: Decimal = Decimal('0')
    shipping_cost: Decimal = Decimal('0')
    discount_amount: Decimal = Decimal('0')
    total_amount: Decimal = Decimal('0')

    @property
    def new_products_count(self) -> int:
        return sum(1 for line in self.lines if line.is_new)


class PreviewResult(BaseModel):
    """Everything a confirmation screen needs before committing an import"""

    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    invoice: NormalizedInvoice
    dialect: str
    has_rendering: bool = False
    is_duplicate: bool = False
    duplicate_info: Optional[DuplicateInfo] = None
    projection: Optional[ImportProjection] = None

    def to_response(self) -> Dict[str, Any]:
        normalized = self.invoice.model_dump(mode='json')
        return {
            'success': True,
            'data': {
                'isValid': self.is_valid,
                'errors': self.errors,
                'invoice': normalized['invoice'],
                'supplier': normalized['supplier'],
                'items': normalized['items'],
                'totals': normalized['totals'],
                'hasPdf': self.has_rendering,
                'isDuplicate': self.is_duplicate,
                'duplicateInfo': self.duplicate_info.model_dump(mode='json') if self.duplicate_info else None,
                'projection': self.projection.model_dump(mode='json') if self.projection else None,
            }
        }


class PurchaseLineView(BaseModel):
    position: int
    product_id: str
    product_name: str
    product_sku: str
    quantity: Decimal
    unit_cost: Decimal
    sale_price: Decimal
    tax_percentage: Decimal
    tax_amount: Decimal
    subtotal: Decimal
    total: Decimal


class PurchaseView(BaseModel):
    """Created purchase with its resolved supplier and materialized lines"""

    id: str
    tenant_id: str
    purchase_number: str
    invoice_number: Optional[str] = None
    supplier_id: str
    supplier_name: str
    purchase_date: Optional[date] = None
    expected_date: Optional[date] = None
    status: str
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    created_by: Optional[str] = None
    items: List[PurchaseLineView] = Field(default_factory=list)


class ImportSummary(BaseModel):
    supplier: str
    invoice_number: str
    items_count: int
    new_products_created: int
    total_amount: Decimal


class ImportResult(BaseModel):
    purchase: PurchaseView
    summary: ImportSummary

    def to_response(self) -> Dict[str, Any]:
        return {
            'success': True,
            'message': 'Invoice imported successfully',
            'data': {
                'purchase': self.purchase.model_dump(mode='json'),
                'summary': self.summary.model_dump(mode='json'),
            }
        }
