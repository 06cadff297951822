"""
EInvEx Exceptions

All errors raised by the ingestion pipeline derive from EinvexError so
callers can catch the whole family at once.

Exception Hierarchy:
    EinvexError (base)
    ├── ConfigurationError
    ├── ExtractionError
    ├── MalformedDocumentError
    ├── DialectError
    │   └── EnvelopeUnwrapError
    ├── InvoiceValidationError
    ├── DuplicateInvoiceError
    └── InvoiceImportError
"""

from typing import Any, Dict, List, Optional


class EinvexError(Exception):
    """
    Base exception for all EInvEx errors.

    Attributes:
        message: Human-readable error message.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(EinvexError):
    """Raised when the configuration is missing or inconsistent."""
    pass


class ExtractionError(EinvexError):
    """Raised when an uploaded archive cannot be opened or holds no XML document."""
    pass


class MalformedDocumentError(EinvexError):
    """Raised when document bytes are not well-formed XML."""

    def __init__(self, reason: str, line: Optional[int] = None):
        details = {'reason': reason}
        if line is not None:
            details['line'] = line
        super().__init__("Document is not well-formed XML", details)


class DialectError(EinvexError):
    """
    Raised by a dialect adapter that recognized a document but could not
    read it. The detector never falls through to another adapter on this error.
    """

    def __init__(self, dialect: str, reason: str):
        self.dialect = dialect
        super().__init__(f"Could not read {dialect} document: {reason}", {'dialect': dialect})


class EnvelopeUnwrapError(DialectError):
    """Raised when an enveloped document's embedded invoice cannot be recovered."""

    def __init__(self, reason: str):
        super().__init__('envelope', reason)


class InvoiceValidationError(EinvexError):
    """Raised when a normalized invoice is not complete enough to import."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invoice data is invalid", {'errors': self.errors})


class DuplicateInvoiceError(EinvexError):
    """
    Raised when an external invoice number was already imported for the tenant.

    This is a business conflict, not a defect: it always carries a summary of
    the existing purchase so the caller can offer to show it.
    """

    def __init__(self, invoice_number: str, existing: Any):
        self.invoice_number = invoice_number
        self.existing = existing
        super().__init__(
            f"Invoice {invoice_number} was already imported",
            {'invoice_number': invoice_number}
        )

    def to_response(self) -> Dict[str, Any]:
        """Build the conflict payload returned to callers."""
        existing = self.existing.model_dump(mode='json') if hasattr(self.existing, 'model_dump') else self.existing
        return {
            'success': False,
            'message': 'This invoice was already imported',
            'error': 'DUPLICATE_INVOICE',
            'data': {
                'invoice_number': self.invoice_number,
                'existing_purchase': existing
            }
        }


class InvoiceImportError(EinvexError):
    """
    Raised when the import orchestrator fails after having rolled back.

    Attributes:
        step: Orchestrator step that failed (e.g. 'materialize_items').
        item_index: Zero-based index of the offending line in the invoice, if any.
        cause: The underlying exception.
    """

    def __init__(
        self,
        step: str,
        reason: str,
        item_index: Optional[int] = None,
        cause: Optional[BaseException] = None
    ):
        self.step = step
        self.item_index = item_index
        self.cause = cause
        details: Dict[str, Any] = {'step': step}
        if item_index is not None:
            details['item_index'] = item_index
        if cause is not None:
            details['cause'] = f"{type(cause).__name__}: {cause}"
        super().__init__(f"Invoice import failed: {reason}", details)


__all__ = [
    'EinvexError',
    'ConfigurationError',
    'ExtractionError',
    'MalformedDocumentError',
    'DialectError',
    'EnvelopeUnwrapError',
    'InvoiceValidationError',
    'DuplicateInvoiceError',
    'InvoiceImportError',
]
