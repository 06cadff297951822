from einvex.models.invoice import (
    SupplierInfo,
    InvoiceHeader,
    InvoiceItem,
    InvoiceTotals,
    NormalizedInvoice,
    ValidationResult,
    ImportOptions,
    DuplicateInfo,
    ProjectedLine,
    ImportProjection,
    PreviewResult,
    PurchaseLineView,
    PurchaseView,
    ImportSummary,
    ImportResult,
    parse_decimal,
    parse_date,
)

__all__ = [
    'SupplierInfo',
    'InvoiceHeader',
    'InvoiceItem',
    'InvoiceTotals',
    'NormalizedInvoice',
    'ValidationResult',
    'ImportOptions',
    'DuplicateInfo',
    'ProjectedLine',
    'ImportProjection',
    'PreviewResult',
    'PurchaseLineView',
    'PurchaseView',
    'ImportSummary',
    'ImportResult',
    'parse_decimal',
    'parse_date',
]
