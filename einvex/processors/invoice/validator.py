"""
Invoice Validator

Checks that a normalized invoice is complete enough to import. The required
checks are deliberately minimal because the source document is not schema
validated; stricter checks plug in as extra rules.
"""

import logging
from decimal import Decimal
from typing import Callable, List, Optional

from einvex.models.invoice import NormalizedInvoice, ValidationResult

logger = logging.getLogger(__name__)

Rule = Callable[[NormalizedInvoice], List[str]]


def require_supplier_name(invoice: NormalizedInvoice) -> List[str]:
    if not invoice.supplier.name:
        return ['Could not extract the supplier name']
    return []


def require_items(invoice: NormalizedInvoice) -> List[str]:
    if not invoice.items:
        return ['No line items found in the invoice']
    return []


def require_invoice_number(invoice: NormalizedInvoice) -> List[str]:
    if not invoice.invoice.number:
        return ['Could not extract the invoice number']
    return []


def tax_consistency_rule(tolerance: Decimal = Decimal('0.01')) -> Rule:
    """
    Optional rule: line tax must match its rate and header totals must match the lines.

    Not enabled by default; real-world documents often fail it while still
    being importable.
    """

    def check(invoice: NormalizedInvoice) -> List[str]:
        errors = []
        for index, item in enumerate(invoice.items):
            expected = item.subtotal * item.tax_percentage / Decimal('100')
            if abs(expected - item.tax_amount) > tolerance:
                errors.append(
                    f"Line {index}: tax {item.tax_amount} does not match "
                    f"{item.tax_percentage}% of {item.subtotal}"
                )
        errors.extend(invoice.totals.discrepancies)
        return errors

    return check


DEFAULT_RULES: List[Rule] = [
    require_supplier_name,
    require_items,
    require_invoice_number,
]


class InvoiceValidator:
    """
    Validates normalized invoices before any persistence.

    Features:
    - Required fields: supplier name, at least one line, invoice number
    - Every error reported, not just the first
    - Extension point for stricter rules
    """

    def __init__(self, rules: Optional[List[Rule]] = None, extra_rules: Optional[List[Rule]] = None):
        self.rules = list(rules) if rules is not None else list(DEFAULT_RULES)
        if extra_rules:
            self.rules.extend(extra_rules)

    def validate(self, invoice: NormalizedInvoice) -> ValidationResult:
        errors: List[str] = []
        for rule in self.rules:
            errors.extend(rule(invoice))

        if errors:
            logger.info(f"Invoice failed validation: {errors}")
        return ValidationResult(valid=not errors, errors=errors)


def validate_invoice(invoice: NormalizedInvoice) -> ValidationResult:
    """Validate with the default rules"""
    return InvoiceValidator().validate(invoice)
