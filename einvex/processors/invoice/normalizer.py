"""
Invoice Normalizer

Turns the raw fields read by a dialect adapter into a ``NormalizedInvoice``.
Handles:
- Missing numbers (treated as not provided, zero in the result)
- Line arithmetic (subtotal, tax, total) with 2-decimal rounding
- Tax-rate recovery and the configured default rate
- Synthesized SKUs for lines without an identifier
- Reconciliation of header totals against line sums
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from einvex.config.einvex_config import EinvexConfig
from einvex.models.invoice import (
    InvoiceHeader,
    InvoiceItem,
    InvoiceTotals,
    NormalizedInvoice,
    SupplierInfo,
)

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
HUNDRED = Decimal('100')
ZERO = Decimal('0')


def money(value: Decimal) -> Decimal:
    """Round to 2 decimals, half up. Values too large to round come back as zero."""
    try:
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        logger.warning(f"Amount {value} is out of range, using 0")
        return ZERO


class InvoiceNormalizer:
    """
    Normalizes raw adapter output to the dialect-independent model.

    Features:
    - Quantity defaults to 1 when absent
    - Subtotal from the line extension amount, else quantity x unit price
    - Tax computed from the line rate when the amount is missing
    - Default tax rate applied, with a warning, only when no rate can be found
    - Header totals preferred when present; discrepancies logged and kept
    """

    def __init__(self, config: Optional[EinvexConfig] = None):
        config = config or EinvexConfig()
        self.default_tax_percentage = config.get_decimal('extraction.default_tax_percentage', 19)
        self.synthetic_sku_prefix = config.get('extraction.synthetic_sku_prefix', 'TEMP-')
        self.tolerance = config.get_decimal('extraction.totals_tolerance', '0.01')

    def normalize(self, raw) -> NormalizedInvoice:
        """
        Build a NormalizedInvoice from a RawInvoice.

        Args:
            raw: RawInvoice produced by a dialect adapter

        Returns:
            NormalizedInvoice with every field present (unknowns as None)
        """
        items = [self.normalize_line(line, position) for position, line in enumerate(raw.lines)]
        invoice = NormalizedInvoice(
            supplier=SupplierInfo(
                tax_id=raw.supplier_tax_id,
                name=raw.supplier_name,
                email=raw.supplier_email,
                phone=raw.supplier_phone,
                address=raw.supplier_address,
            ),
            invoice=InvoiceHeader(
                number=raw.number,
                issue_date=raw.issue_date,
                due_date=raw.due_date,
            ),
            items=items,
            totals=self.reconcile_totals(raw, items),
        )
        return invoice

    def normalize_line(self, line, position: int) -> InvoiceItem:
        quantity = line.quantity if line.quantity is not None else Decimal('1')

        if line.subtotal is not None:
            subtotal = money(line.subtotal)
        elif line.unit_price is not None:
            subtotal = money(quantity * line.unit_price)
        else:
            subtotal = ZERO

        if line.unit_price is not None:
            unit_price = line.unit_price
        elif quantity:
            unit_price = money(subtotal / quantity)
        else:
            unit_price = ZERO

        rate = line.tax_percentage
        tax_amount = line.tax_amount
        if tax_amount is None and rate is not None:
            tax_amount = money(subtotal * rate / HUNDRED)
        elif tax_amount is None and line.total is not None:
            tax_amount = money(line.total - subtotal)

        if rate is None and tax_amount is not None and subtotal:
            rate = money(tax_amount / subtotal * HUNDRED)
        if rate is None:
            rate = self.default_tax_percentage
            logger.warning(
                f"Line {position}: no tax rate in document, applying default {rate}%"
            )
        tax_amount = money(tax_amount) if tax_amount is not None else ZERO

        total = subtotal + tax_amount
        if line.total is not None and abs(line.total - total) > self.tolerance:
            logger.warning(
                f"Line {position}: document total {line.total} differs from computed {total}"
            )

        sku = line.sku
        synthesized = False
        if not sku:
            sku = f"{self.synthetic_sku_prefix}{position + 1:04d}"
            synthesized = True

        name = line.name
        if not name:
            name = line.sku or f"Unnamed item {position + 1}"
            logger.warning(f"Line {position}: no description, using '{name}'")

        return InvoiceItem(
            name=name,
            sku=sku,
            sku_synthesized=synthesized,
            quantity=quantity,
            unit_price=unit_price,
            tax_percentage=rate,
            tax_amount=tax_amount,
            subtotal=subtotal,
            total=total,
        )

    def reconcile_totals(self, raw, items: List[InvoiceItem]) -> InvoiceTotals:
        """
        Document totals, from the header when it has them, else from the lines.

        Header figures are compared to the line sums; every difference beyond
        the tolerance is logged and recorded on the result.
        """
        items_subtotal = sum((i.subtotal for i in items), ZERO)
        items_tax = sum((i.tax_amount for i in items), ZERO)
        items_total = sum((i.total for i in items), ZERO)

        if raw.subtotal is None and raw.tax is None and raw.total is None:
            return InvoiceTotals(
                subtotal=money(items_subtotal),
                tax=money(items_tax),
                total=money(items_total),
                source='items',
            )

        subtotal = raw.subtotal if raw.subtotal is not None else items_subtotal
        tax = raw.tax
        if tax is None and raw.total is not None and raw.tax_exclusive is not None:
            tax = raw.total - raw.tax_exclusive
        if tax is None:
            tax = items_tax
        total = raw.total if raw.total is not None else subtotal + tax

        discrepancies = []
        comparisons: Dict[str, Any] = {
            'subtotal': (subtotal, items_subtotal),
            'tax': (tax, items_tax),
            'total': (total, items_total),
        }
        for field_name, (header_value, items_value) in comparisons.items():
            if items and abs(header_value - items_value) > self.tolerance:
                message = (
                    f"Header {field_name} {money(header_value)} differs from "
                    f"sum of lines {money(items_value)}"
                )
                logger.warning(message)
                discrepancies.append(message)

        return InvoiceTotals(
            subtotal=money(subtotal),
            tax=money(tax),
            total=money(total),
            source='header',
            discrepancies=discrepancies,
        )
