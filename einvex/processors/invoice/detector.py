"""
Format Detector

Classifies a parsed document and dispatches it to the first adapter that
recognizes its root. The heuristic adapter closes the cascade and always
answers. A ``DialectError`` from a recognizing adapter is final and never
falls through to the next one.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from einvex.config.einvex_config import EinvexConfig
from einvex.models.invoice import NormalizedInvoice
from einvex.processors.invoice.dialects import (
    DialectAdapter,
    EnvelopeAdapter,
    GenericAdapter,
    HeuristicAdapter,
    StandardAdapter,
)
from einvex.processors.invoice.normalizer import InvoiceNormalizer
from einvex.processors.invoice.xml_tree import ParsedNode

logger = logging.getLogger(__name__)


@dataclass
class DetectionResult:
    """
    Attributes:
        dialect: Dialect of the document that carried the invoice data
        invoice: Normalized extraction result
        envelope_depth: Number of envelopes unwrapped to reach the invoice
    """
    dialect: str
    invoice: NormalizedInvoice
    envelope_depth: int = 0

    @property
    def enveloped(self) -> bool:
        return self.envelope_depth > 0


class FormatDetector:
    """
    Ordered dialect cascade: envelope, standard, generic, heuristic.
    """

    def __init__(self, config: Optional[EinvexConfig] = None):
        config = config or EinvexConfig()
        self.normalizer = InvoiceNormalizer(config)
        self.envelope = EnvelopeAdapter(
            self.normalizer,
            detect=self.detect,
            max_depth=int(config.get('extraction.max_envelope_depth', 3))
        )
        self.adapters: List[DialectAdapter] = [
            StandardAdapter(self.normalizer),
            GenericAdapter(self.normalizer),
        ]
        self.fallback = HeuristicAdapter(self.normalizer)

    def classify(self, root: ParsedNode) -> str:
        """Name of the dialect that would handle this root"""
        if self.envelope.recognizes(root):
            return self.envelope.name
        for adapter in self.adapters:
            if adapter.recognizes(root):
                return adapter.name
        return self.fallback.name

    def detect(self, root: ParsedNode, depth: int = 0) -> DetectionResult:
        """
        Detect the dialect and extract the normalized invoice.

        Args:
            root: Parsed document root
            depth: Envelope nesting level of this document

        Returns:
            DetectionResult

        Raises:
            EnvelopeUnwrapError: If an envelope is recognized but cannot be unwrapped
        """
        if self.envelope.recognizes(root):
            logger.info(f"Detected envelope <{root.qualified}>")
            return self.envelope.unwrap(root, depth)

        for adapter in self.adapters:
            if adapter.recognizes(root):
                logger.info(f"Detected {adapter.name} dialect <{root.qualified}>")
                return DetectionResult(adapter.name, adapter.adapt(root), envelope_depth=depth)

        logger.info(f"Unrecognized root <{root.qualified}>, using heuristic extraction")
        return DetectionResult(self.fallback.name, self.fallback.adapt(root), envelope_depth=depth)
