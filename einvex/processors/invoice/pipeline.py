"""
Invoice Parsing Pipeline

Upload bytes to a validated, normalized invoice:

    archive -> structural parser -> format detector -> validator

Parsing keeps no state between calls and may run concurrently for
independent uploads.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from einvex.config.einvex_config import EinvexConfig
from einvex.models.invoice import NormalizedInvoice, ValidationResult
from einvex.processors.invoice.archive import ArchiveExtractor, RawBundle
from einvex.processors.invoice.detector import FormatDetector
from einvex.processors.invoice.validator import InvoiceValidator
from einvex.processors.invoice.xml_tree import parse_xml

logger = logging.getLogger(__name__)


@dataclass
class ParsedUpload:
    """Everything learned from one upload"""
    bundle: RawBundle
    dialect: str
    invoice: NormalizedInvoice
    validation: ValidationResult
    envelope_depth: int = 0

    @property
    def has_rendering(self) -> bool:
        return self.bundle.has_rendering


class InvoicePipeline:
    """
    Runs the parsing stages for an upload.

    Usage:
        pipeline = InvoicePipeline()
        parsed = pipeline.parse_upload(zip_bytes)
        if parsed.validation.valid:
            ...
    """

    def __init__(
        self,
        config: Optional[EinvexConfig] = None,
        validator: Optional[InvoiceValidator] = None
    ):
        config = config or EinvexConfig()
        self.extractor = ArchiveExtractor(config)
        self.detector = FormatDetector(config)
        self.validator = validator or InvoiceValidator()

    def parse_upload(self, data: bytes) -> ParsedUpload:
        """
        Parse a compressed upload.

        Raises:
            ExtractionError: Bad archive or no XML document
            MalformedDocumentError: Document is not well-formed
            EnvelopeUnwrapError: Envelope recognized but inner document unrecoverable
        """
        bundle = self.extractor.extract(data)
        return self.parse_bundle(bundle)

    def parse_bundle(self, bundle: RawBundle) -> ParsedUpload:
        root = parse_xml(bundle.document)
        detection = self.detector.detect(root)
        validation = self.validator.validate(detection.invoice)
        logger.info(
            f"Parsed invoice {detection.invoice.invoice.number} ({detection.dialect}): "
            f"{len(detection.invoice.items)} items, valid={validation.valid}"
        )
        return ParsedUpload(
            bundle=bundle,
            dialect=detection.dialect,
            invoice=detection.invoice,
            validation=validation,
            envelope_depth=detection.envelope_depth
        )

    def parse_document(self, document: bytes) -> NormalizedInvoice:
        """Parse a bare XML document, skipping the archive stage"""
        return self.detector.detect(parse_xml(document)).invoice
