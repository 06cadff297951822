"""
Invoice Processing Module

Turns electronic invoice uploads into normalized, validated invoices.

Components:
- ArchiveExtractor: Finds the XML document (and optional PDF) in a ZIP upload
- parse_xml / ParsedNode: Case- and prefix-insensitive document tree
- FormatDetector: Envelope, standard, generic and heuristic dialect cascade
- InvoiceNormalizer: Line arithmetic and totals reconciliation
- InvoiceValidator: Minimal completeness checks with pluggable rules
- InvoicePipeline: End-to-end parsing of an upload
"""

from .archive import ArchiveExtractor, RawBundle
from .xml_tree import ParsedNode, parse_xml
from .detector import FormatDetector, DetectionResult
from .normalizer import InvoiceNormalizer
from .validator import InvoiceValidator, validate_invoice, tax_consistency_rule
from .pipeline import InvoicePipeline, ParsedUpload

__all__ = [
    # Stages
    'ArchiveExtractor',
    'FormatDetector',
    'InvoiceNormalizer',
    'InvoiceValidator',
    'InvoicePipeline',

    # Utilities
    'parse_xml',
    'validate_invoice',
    'tax_consistency_rule',

    # Types
    'RawBundle',
    'ParsedNode',
    'DetectionResult',
    'ParsedUpload',
]
