"""
Dialect Adapters

Each adapter reads one family of invoice documents into a ``RawInvoice``
through a vocabulary of candidate tag paths, then hands it to the normalizer
so every dialect yields the same ``NormalizedInvoice`` shape.

Dialects:
- standard: UBL 2.1 electronic invoices (DIAN profile), namespaced
- generic: flat Spanish/English markup rooted at ``<factura>``
- heuristic: merged vocabulary, searched at any depth, never fails
- envelope: ``AttachedDocument`` wrapping a complete invoice as text
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from decimal import Decimal
from itertools import chain
from typing import Callable, List, Optional, Sequence, Tuple, Union

from einvex.exceptions import EnvelopeUnwrapError, MalformedDocumentError
from einvex.models.invoice import NormalizedInvoice, parse_decimal
from einvex.processors.invoice.xml_tree import ParsedNode, parse_xml

logger = logging.getLogger(__name__)

Step = Union[str, Tuple[str, ...]]
Path = Tuple[Step, ...]


@dataclass
class RawLine:
    """Line fields as read from the document; None means not provided"""
    name: Optional[str] = None
    sku: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    tax_percentage: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    total: Optional[Decimal] = None


@dataclass
class RawInvoice:
    supplier_tax_id: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_email: Optional[str] = None
    supplier_phone: Optional[str] = None
    supplier_address: Optional[str] = None
    number: Optional[str] = None
    issue_date: Optional[str] = None
    due_date: Optional[str] = None
    lines: List[RawLine] = field(default_factory=list)
    subtotal: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    total: Optional[Decimal] = None
    tax_exclusive: Optional[Decimal] = None


@dataclass
class Vocabulary:
    """
    Candidate tag paths per logical field.

    Paths are tried in order; the first one that resolves to text wins.
    Supplier fields are relative to the supplier node, line fields to the
    line node, everything else to the document root.
    """
    supplier: List[Path] = field(default_factory=list)
    supplier_tax_id: List[Path] = field(default_factory=list)
    supplier_name: List[Path] = field(default_factory=list)
    supplier_email: List[Path] = field(default_factory=list)
    supplier_phone: List[Path] = field(default_factory=list)
    address_container: List[Path] = field(default_factory=list)
    address_line: List[Path] = field(default_factory=list)
    address_city: List[Path] = field(default_factory=list)
    address_region: List[Path] = field(default_factory=list)
    number: List[Path] = field(default_factory=list)
    issue_date: List[Path] = field(default_factory=list)
    due_date: List[Path] = field(default_factory=list)
    line_tags: List[str] = field(default_factory=list)
    line_containers: List[Path] = field(default_factory=list)
    line_name: List[Path] = field(default_factory=list)
    line_sku: List[Path] = field(default_factory=list)
    line_quantity: List[Path] = field(default_factory=list)
    line_unit_price: List[Path] = field(default_factory=list)
    line_subtotal: List[Path] = field(default_factory=list)
    line_total: List[Path] = field(default_factory=list)
    line_tax_amount: List[Path] = field(default_factory=list)
    line_tax_percentage: List[Path] = field(default_factory=list)
    header_subtotal: List[Path] = field(default_factory=list)
    header_tax: List[Path] = field(default_factory=list)
    header_total: List[Path] = field(default_factory=list)
    header_tax_exclusive: List[Path] = field(default_factory=list)

    def merged(self, other: 'Vocabulary') -> 'Vocabulary':
        """Union of both vocabularies, this one's candidates first"""
        merged = Vocabulary()
        for name in self.__dataclass_fields__:
            ours = getattr(self, name)
            extra = [p for p in getattr(other, name) if p not in ours]
            setattr(merged, name, list(ours) + extra)
        return merged


STANDARD_VOCABULARY = Vocabulary(
    supplier=[('accountingsupplierparty', 'party'), ('accountingsupplierparty',)],
    supplier_tax_id=[
        ('partytaxscheme', 'companyid'),
        ('partylegalentity', 'companyid'),
        ('partyidentification', 'id'),
    ],
    supplier_name=[
        ('partyname', 'name'),
        ('partytaxscheme', 'registrationname'),
        ('partylegalentity', 'registrationname'),
    ],
    supplier_email=[('contact', 'electronicmail')],
    supplier_phone=[('contact', 'telephone')],
    address_container=[
        ('physicallocation', 'address'),
        ('postaladdress',),
        ('partytaxscheme', 'registrationaddress'),
    ],
    address_line=[('addressline', 'line')],
    address_city=[('cityname',)],
    address_region=[('countrysubentity',)],
    number=[('id',)],
    issue_date=[('issuedate',)],
    due_date=[('duedate',), ('paymentmeans', 'paymentduedate')],
    line_tags=['invoiceline', 'creditnoteline', 'debitnoteline'],
    line_name=[('item', 'description'), ('item', 'name'), ('nombre',), ('descripcion',)],
    line_sku=[
        ('item', 'sellersitemidentification', 'id'),
        ('item', 'standarditemidentification', 'id'),
        ('codigo',),
        ('sku',),
        ('item', 'additionalinformation'),
    ],
    line_quantity=[('invoicedquantity',), ('creditedquantity',), ('debitedquantity',)],
    line_unit_price=[('price', 'priceamount')],
    line_subtotal=[('lineextensionamount',)],
    line_tax_amount=[('taxtotal', 'taxamount')],
    # Rate at the tax-category level first, then at the tax-subtotal level
    line_tax_percentage=[
        ('taxtotal', 'taxsubtotal', 'taxcategory', 'percent'),
        ('taxtotal', 'taxsubtotal', 'percent'),
    ],
    header_subtotal=[
        ('legalmonetarytotal', 'lineextensionamount'),
        ('legalmonetarytotal', 'taxexclusiveamount'),
    ],
    header_tax=[('taxtotal', 'taxamount')],
    header_total=[
        ('legalmonetarytotal', 'payableamount'),
        ('legalmonetarytotal', 'taxinclusiveamount'),
    ],
    header_tax_exclusive=[('legalmonetarytotal', 'taxexclusiveamount')],
)

GENERIC_VOCABULARY = Vocabulary(
    supplier=[('emisor',), ('proveedor',), ('supplier',)],
    supplier_tax_id=[('nit',), ('rut',), ('tax_id',), ('identificacion',)],
    supplier_name=[('nombre',), ('razon_social',), ('razonsocial',), ('name',)],
    supplier_email=[('email',), ('correo',)],
    supplier_phone=[('telefono',), ('phone',)],
    address_container=[()],
    address_line=[('direccion',), ('address',)],
    address_city=[('ciudad',), ('city',)],
    address_region=[('departamento',), ('region',)],
    number=[('numero',), ('id',), ('number',)],
    issue_date=[('fecha',), ('fecha_emision',), ('fechaemision',), ('issue_date',)],
    due_date=[('fechavencimiento',), ('fecha_vencimiento',), ('due_date',)],
    line_containers=[('items',), ('productos',), ('lineas',)],
    line_name=[('nombre',), ('descripcion',), ('name',)],
    line_sku=[('codigo',), ('sku',)],
    line_quantity=[('cantidad',), ('quantity',)],
    line_unit_price=[('precio',), ('precio_unitario',), ('price',)],
    line_subtotal=[('subtotal',)],
    line_total=[('total',)],
    line_tax_amount=[('iva',), ('tax',)],
    line_tax_percentage=[('iva_porcentaje',), ('porcentaje_iva',), ('tax_percent',)],
    header_subtotal=[('subtotal',), ('totales', 'subtotal')],
    header_tax=[('iva',), ('impuesto',), ('totales', 'iva'), ('totales', 'impuesto')],
    header_total=[('total',), ('totales', 'total')],
)

HEURISTIC_VOCABULARY = replace(
    STANDARD_VOCABULARY.merged(GENERIC_VOCABULARY).merged(Vocabulary(
        # An empty path reads the supplier fields from the document root
        supplier=[('supplierparty',), ('seller',), ('vendor',), ('vendedor',), ()],
        supplier_tax_id=[('taxid',), ('ruc',)],
        supplier_name=[('partyname',), ('partylegalentity',)],
        issue_date=[('date',)],
        line_containers=[('lines',), ('detalles',), ('detail',)],
        line_name=[('producto', 'nombre'), ('product', 'name'), ('description',)],
        line_sku=[('code',)],
        line_quantity=[('qty',)],
        header_subtotal=[
            ('totals', 'subtotal'), ('totalmonetario', 'subtotal'),
            ('totales', 'base'), ('totals', 'base'),
        ],
        header_tax=[('totals', 'tax'), ('totalmonetario', 'iva')],
        header_total=[
            ('totals', 'total'), ('totalmonetario', 'total'),
            ('totales', 'grandtotal'), ('totals', 'grandtotal'),
        ],
    )),
    # Specific tags before the bare 'id' that parties and lines also carry
    number=[('numero',), ('invoicenumber',), ('numerofactura',), ('number',), ('id',)],
)


def resolve(node: Optional[ParsedNode], paths: Sequence[Path]) -> Optional[ParsedNode]:
    """First node reached by any of the candidate paths"""
    if node is None:
        return None
    for path in paths:
        found = node.path(*path) if path else node
        if found is not None:
            return found
    return None


def resolve_text(node: Optional[ParsedNode], paths: Sequence[Path]) -> Optional[str]:
    """Text at the first candidate path that carries any"""
    if node is None:
        return None
    for path in paths:
        found = node.path(*path) if path else node
        if found is not None:
            text = found.text_value()
            if text is not None:
                return text
    return None


def resolve_number(node: Optional[ParsedNode], paths: Sequence[Path]) -> Optional[Decimal]:
    """Number at the first candidate path that parses; unparsable text is skipped"""
    if node is None:
        return None
    for path in paths:
        found = node.path(*path) if path else node
        if found is not None:
            number = parse_decimal(found.text_value())
            if number is not None:
                return number
    return None


def _names(step: Step) -> Tuple[str, ...]:
    return step if isinstance(step, tuple) else (step,)


def _follow(anchor: ParsedNode, path: Path, excluded: set) -> Optional[ParsedNode]:
    """Follow ``path`` from ``anchor`` unless its first hop lands on an excluded node"""
    head = anchor.find(*_names(path[0]))
    if head is None or id(head) in excluded:
        return None
    return head.path(*path[1:])


class DialectAdapter(ABC):
    """
    Base class for dialect adapters.

    Subclasses decide which roots they recognize; reading is shared and
    driven by the adapter's vocabulary.
    """

    name = 'base'
    vocabulary = Vocabulary()

    def __init__(self, normalizer):
        self.normalizer = normalizer

    @abstractmethod
    def recognizes(self, root: ParsedNode) -> bool:
        """Check whether the root shape belongs to this dialect"""
        pass

    def adapt(self, root: ParsedNode) -> NormalizedInvoice:
        """Read the document and normalize it"""
        raw = self.read(root)
        logger.debug(f"{self.name} adapter read {len(raw.lines)} lines")
        return self.normalizer.normalize(raw)

    def read(self, root: ParsedNode) -> RawInvoice:
        v = self.vocabulary
        raw = RawInvoice()

        supplier = self.locate(root, v.supplier)
        lines = self.line_nodes(root)
        # Header fields are never read from inside the supplier party or a line
        owned = list(lines)
        if supplier is not None and supplier is not root:
            owned.append(supplier)

        if supplier is not None:
            raw.supplier_tax_id = self.text(supplier, v.supplier_tax_id, skip=lines)
            raw.supplier_name = self.text(supplier, v.supplier_name, skip=lines)
            raw.supplier_email = self.text(supplier, v.supplier_email, skip=lines)
            raw.supplier_phone = self.text(supplier, v.supplier_phone, skip=lines)
            raw.supplier_address = self.read_address(supplier, skip=lines)
        else:
            logger.debug(f"{self.name} adapter found no supplier party")

        raw.number = self.text(root, v.number, skip=owned)
        raw.issue_date = self.text(root, v.issue_date, skip=owned)
        raw.due_date = self.text(root, v.due_date, skip=owned)

        raw.lines = [self.read_line(node) for node in lines]

        raw.subtotal = self.header_number(root, v.header_subtotal, skip=owned)
        raw.tax = self.header_tax(root)
        raw.total = self.header_number(root, v.header_total, skip=owned)
        raw.tax_exclusive = self.header_number(root, v.header_tax_exclusive, skip=owned)
        return raw

    def header_number(
        self, root: ParsedNode, paths: Sequence[Path], skip: Sequence[ParsedNode] = ()
    ) -> Optional[Decimal]:
        return resolve_number(root, paths)

    def read_address(self, supplier: ParsedNode, skip: Sequence[ParsedNode] = ()) -> Optional[str]:
        v = self.vocabulary
        container = self.locate(supplier, v.address_container) if v.address_container else supplier
        if container is None:
            return None
        parts = [
            self.text(container, v.address_line, skip=skip),
            self.text(container, v.address_city, skip=skip),
            self.text(container, v.address_region, skip=skip),
        ]
        parts = [p for p in parts if p]
        return ', '.join(parts) if parts else None

    def read_line(self, node: ParsedNode) -> RawLine:
        v = self.vocabulary
        return RawLine(
            name=self.text(node, v.line_name),
            sku=self.text(node, v.line_sku),
            quantity=self.number(node, v.line_quantity),
            unit_price=self.number(node, v.line_unit_price),
            tax_percentage=self.number(node, v.line_tax_percentage),
            tax_amount=self.line_tax_amount(node),
            subtotal=self.number(node, v.line_subtotal),
            total=self.number(node, v.line_total),
        )

    def line_tax_amount(self, node: ParsedNode) -> Optional[Decimal]:
        return self.summed(node, self.vocabulary.line_tax_amount)

    def header_tax(self, root: ParsedNode) -> Optional[Decimal]:
        return self.summed(root, self.vocabulary.header_tax)

    def summed(self, node: ParsedNode, paths: Sequence[Path]) -> Optional[Decimal]:
        """
        Sum the amount over repeated first-step containers.

        A document may carry one tax total per tax scheme; all of them count.
        """
        for path in paths:
            if len(path) < 2:
                value = resolve_number(node, [path])
                if value is not None:
                    return value
                continue
            first, rest = path[0], path[1:]
            names = first if isinstance(first, tuple) else (first,)
            amounts = [resolve_number(c, [rest]) for c in node.find_all(*names)]
            amounts = [a for a in amounts if a is not None]
            if amounts:
                return sum(amounts, Decimal('0'))
        return None

    def line_nodes(self, root: ParsedNode) -> List[ParsedNode]:
        v = self.vocabulary
        if v.line_tags:
            lines = root.find_all(*v.line_tags)
            if lines:
                return lines
        for path in v.line_containers:
            container = root.path(*path)
            if container is not None and container.children:
                return container.find_all('*')
        return []

    def locate(self, node: ParsedNode, paths: Sequence[Path]) -> Optional[ParsedNode]:
        return resolve(node, paths)

    def text(
        self, node: ParsedNode, paths: Sequence[Path], skip: Sequence[ParsedNode] = ()
    ) -> Optional[str]:
        return resolve_text(node, paths)

    def number(
        self, node: ParsedNode, paths: Sequence[Path], skip: Sequence[ParsedNode] = ()
    ) -> Optional[Decimal]:
        return resolve_number(node, paths)


class StandardAdapter(DialectAdapter):
    """UBL invoices: root tag names the invoice itself"""

    name = 'standard'
    vocabulary = STANDARD_VOCABULARY

    def recognizes(self, root: ParsedNode) -> bool:
        return 'invoice' in root.tag or root.tag in ('creditnote', 'debitnote')


class GenericAdapter(DialectAdapter):
    """Flat invoices rooted at a ``factura`` element"""

    name = 'generic'
    vocabulary = GENERIC_VOCABULARY

    def recognizes(self, root: ParsedNode) -> bool:
        return 'factura' in root.tag


class HeuristicAdapter(DialectAdapter):
    """
    Fallback for unrecognized roots.

    Uses the merged vocabulary and, when a path does not resolve from the
    given node, anchors it at the nearest descendant where it does. Header
    fields skip the supplier party and the lines. Always returns a result.
    """

    name = 'heuristic'
    vocabulary = HEURISTIC_VOCABULARY

    def recognizes(self, root: ParsedNode) -> bool:
        return True

    def _anchored(
        self, node: ParsedNode, paths: Sequence[Path], skip: Sequence[ParsedNode] = ()
    ) -> Optional[ParsedNode]:
        """
        Nearest node with text reached by a candidate path.

        Paths are tried from ``node`` first, then from its descendants one
        depth level at a time, so a shallow match beats a deeper one whatever
        the candidate order. Within a level candidates keep their order.
        Subtrees in ``skip`` are never entered.
        """
        paths = [p for p in paths if p]
        excluded = {id(n) for n in skip}
        for level in chain([[node]], node.levels(skip)):
            for path in paths:
                for anchor in level:
                    target = _follow(anchor, path, excluded)
                    if target is not None and target.text_value() is not None:
                        return target
        return None

    def locate(self, node: ParsedNode, paths: Sequence[Path]) -> Optional[ParsedNode]:
        found = resolve(node, [p for p in paths if p])
        if found is not None:
            return found
        for path in paths:
            if not path:
                continue
            for anchor in node.search_all(*_names(path[0])):
                target = anchor.path(*path[1:]) if len(path) > 1 else anchor
                if target is not None:
                    return target
        # No container at all: read the fields from the node itself
        return node if () in paths else None

    def text(
        self, node: ParsedNode, paths: Sequence[Path], skip: Sequence[ParsedNode] = ()
    ) -> Optional[str]:
        found = self._anchored(node, paths, skip)
        return found.text_value() if found is not None else None

    def number(
        self, node: ParsedNode, paths: Sequence[Path], skip: Sequence[ParsedNode] = ()
    ) -> Optional[Decimal]:
        found = self._anchored(node, paths, skip)
        return parse_decimal(found.text_value()) if found is not None else None

    def line_tax_amount(self, node: ParsedNode) -> Optional[Decimal]:
        value = super().line_tax_amount(node)
        return value if value is not None else self.number(node, self.vocabulary.line_tax_amount)

    def header_number(
        self, root: ParsedNode, paths: Sequence[Path], skip: Sequence[ParsedNode] = ()
    ) -> Optional[Decimal]:
        value = resolve_number(root, paths)
        if value is not None:
            return value
        # Single-tag paths such as 'subtotal' would hit line amounts if searched deep;
        # only container-qualified paths are anchored below the root
        found = self._anchored(root, [p for p in paths if len(p) > 1], skip)
        return parse_decimal(found.text_value()) if found is not None else None

    def line_nodes(self, root: ParsedNode) -> List[ParsedNode]:
        v = self.vocabulary
        ubl_lines = root.search_all(*STANDARD_VOCABULARY.line_tags)
        if ubl_lines:
            return ubl_lines
        for path in v.line_containers:
            for container in root.search_all(*_names(path[0])):
                if container.children:
                    return container.find_all('*')
        return root.search_all('linea', 'producto', 'detalle', 'product', 'detail')


class EnvelopeAdapter(DialectAdapter):
    """
    ``AttachedDocument`` envelopes.

    The real invoice sits as escaped text (usually CDATA) in
    attachment/externalreference/description; it is parsed and detected
    again, one level deeper.
    """

    name = 'envelope'
    chain: Path = ('attachment', 'externalreference', 'description')

    def __init__(self, normalizer, detect: Callable, max_depth: int = 3):
        super().__init__(normalizer)
        self.detect = detect
        self.max_depth = max_depth

    def recognizes(self, root: ParsedNode) -> bool:
        return 'attacheddocument' in root.tag

    def unwrap(self, root: ParsedNode, depth: int):
        """
        Recover and detect the embedded document.

        Raises:
            EnvelopeUnwrapError: If the chain is missing, the text is not XML,
                or envelopes nest deeper than allowed
        """
        if depth >= self.max_depth:
            raise EnvelopeUnwrapError(f"envelopes nested deeper than {self.max_depth} levels")

        holder = root.path(*self.chain)
        if holder is None:
            raise EnvelopeUnwrapError("attachment/externalreference/description chain not found")

        embedded = holder.raw_text
        if embedded is None or not embedded.strip():
            raise EnvelopeUnwrapError("embedded document is empty")

        try:
            inner = parse_xml(embedded)
        except MalformedDocumentError as e:
            raise EnvelopeUnwrapError(f"embedded document is not well-formed: {e.details.get('reason')}")

        logger.info(f"Unwrapped envelope at depth {depth}: inner root <{inner.qualified}>")
        return self.detect(inner, depth + 1)

    def adapt(self, root: ParsedNode) -> NormalizedInvoice:
        return self.unwrap(root, 0).invoice
