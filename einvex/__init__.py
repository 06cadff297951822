"""
EInvEx - Electronic Invoice Ingestion Library

Turns compressed electronic invoice uploads (UBL/DIAN invoices, their
AttachedDocument envelopes, and simpler flat dialects) into normalized
invoices and, on request, into draft purchases with supplier and product
side effects committed atomically.

Basic usage:
    from einvex import Database, InvoiceImportService, UserContext, ImportOptions

    db = Database()
    db.create_tables()
    service = InvoiceImportService(db)
    user = UserContext(user_id='u1', tenant_id='acme')

    preview = service.preview(zip_bytes, user)
    if preview.is_valid:
        result = service.import_invoice(zip_bytes, user, ImportOptions(profit_margin=30))
        print(result.summary)
"""

from einvex.config.einvex_config import EinvexConfig
from einvex.context import UserContext
from einvex.db.connection import Database
from einvex.models.invoice import ImportOptions, NormalizedInvoice
from einvex.processors.invoice.pipeline import InvoicePipeline
from einvex.services.invoice_import_service import InvoiceImportService

__all__ = [
    'EinvexConfig',
    'UserContext',
    'Database',
    'ImportOptions',
    'NormalizedInvoice',
    'InvoicePipeline',
    'InvoiceImportService',
]

__version__ = '1.0.0'
