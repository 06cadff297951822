from einvex.services.invoice_import_service import InvoiceImportService

__all__ = ['InvoiceImportService']
