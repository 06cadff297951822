import io
import logging
import zipfile
from decimal import Decimal

import pytest

from einvex.config.einvex_config import EinvexConfig
from einvex.db.connection import Database

UBL_NAMESPACES = (
    'xmlns="urn:oasis:names:specification:ubl:schema:xsd:Invoice-2" '
    'xmlns:cac="urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2" '
    'xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"'
)

SUPPLIER = {
    'tax_id': '900123456',
    'name': 'Distribuidora Andina SAS',
    'email': 'ventas@andina.co',
    'phone': '6011234567',
    'line': 'Calle 10 # 20-30',
    'city': 'Bogota',
    'region': 'Cundinamarca',
}

DEFAULT_ITEMS = [
    {'name': 'Tornillo hexagonal', 'sku': 'TOR-001', 'quantity': 3, 'price': 1000, 'rate': 19},
    {'name': 'Tuerca de seguridad', 'sku': 'TUE-002', 'quantity': 10, 'price': 250, 'rate': 19},
    {'name': 'Arandela plana', 'sku': 'ARA-003', 'quantity': 5, 'price': 80, 'rate': 0},
]


def _amounts(item):
    subtotal = Decimal(str(item['quantity'])) * Decimal(str(item['price']))
    tax = (subtotal * Decimal(str(item['rate'])) / 100).quantize(Decimal('0.01'))
    return subtotal, tax, subtotal + tax


def _totals(items):
    subtotal = sum((_amounts(i)[0] for i in items), Decimal('0'))
    tax = sum((_amounts(i)[1] for i in items), Decimal('0'))
    return subtotal, tax, subtotal + tax


def ubl_invoice(number='FE-1001', items=None, supplier=None, header_totals=True, xml_declaration=True):
    """UBL 2.1 invoice in the DIAN profile"""
    items = DEFAULT_ITEMS if items is None else items
    s = dict(SUPPLIER, **(supplier or {}))
    lines = []
    for position, item in enumerate(items, start=1):
        subtotal, tax, _ = _amounts(item)
        sku = ''
        if item.get('sku'):
            sku = (
                '<cac:SellersItemIdentification>'
                f'<cbc:ID>{item["sku"]}</cbc:ID>'
                '</cac:SellersItemIdentification>'
            )
        lines.append(
            '<cac:InvoiceLine>'
            f'<cbc:ID>{position}</cbc:ID>'
            f'<cbc:InvoicedQuantity unitCode="EA">{item["quantity"]}</cbc:InvoicedQuantity>'
            f'<cbc:LineExtensionAmount currencyID="COP">{subtotal:.2f}</cbc:LineExtensionAmount>'
            '<cac:TaxTotal>'
            f'<cbc:TaxAmount currencyID="COP">{tax:.2f}</cbc:TaxAmount>'
            '<cac:TaxSubtotal>'
            f'<cbc:TaxableAmount currencyID="COP">{subtotal:.2f}</cbc:TaxableAmount>'
            f'<cbc:TaxAmount currencyID="COP">{tax:.2f}</cbc:TaxAmount>'
            f'<cac:TaxCategory><cbc:Percent>{item["rate"]:.2f}</cbc:Percent></cac:TaxCategory>'
            '</cac:TaxSubtotal>'
            '</cac:TaxTotal>'
            f'<cac:Item><cbc:Description>{item["name"]}</cbc:Description>{sku}</cac:Item>'
            f'<cac:Price><cbc:PriceAmount currencyID="COP">{item["price"]:.2f}</cbc:PriceAmount></cac:Price>'
            '</cac:InvoiceLine>'
        )

    totals = ''
    if header_totals:
        subtotal, tax, total = _totals(items)
        totals = (
            f'<cac:TaxTotal><cbc:TaxAmount currencyID="COP">{tax:.2f}</cbc:TaxAmount></cac:TaxTotal>'
            '<cac:LegalMonetaryTotal>'
            f'<cbc:LineExtensionAmount currencyID="COP">{subtotal:.2f}</cbc:LineExtensionAmount>'
            f'<cbc:TaxExclusiveAmount currencyID="COP">{subtotal:.2f}</cbc:TaxExclusiveAmount>'
            f'<cbc:TaxInclusiveAmount currencyID="COP">{total:.2f}</cbc:TaxInclusiveAmount>'
            f'<cbc:PayableAmount currencyID="COP">{total:.2f}</cbc:PayableAmount>'
            '</cac:LegalMonetaryTotal>'
        )

    name = f'<cac:PartyName><cbc:Name>{s["name"]}</cbc:Name></cac:PartyName>' if s['name'] else ''
    declaration = '<?xml version="1.0" encoding="UTF-8"?>' if xml_declaration else ''
    return (
        f'{declaration}<Invoice {UBL_NAMESPACES}>'
        '<cbc:UBLVersionID>UBL 2.1</cbc:UBLVersionID>'
        f'<cbc:ID>{number}</cbc:ID>'
        '<cbc:IssueDate>2024-03-15</cbc:IssueDate>'
        '<cbc:DueDate>2024-04-14</cbc:DueDate>'
        '<cac:AccountingSupplierParty><cac:Party>'
        f'{name}'
        '<cac:PhysicalLocation><cac:Address>'
        f'<cbc:CityName>{s["city"]}</cbc:CityName>'
        f'<cbc:CountrySubentity>{s["region"]}</cbc:CountrySubentity>'
        f'<cac:AddressLine><cbc:Line>{s["line"]}</cbc:Line></cac:AddressLine>'
        '</cac:Address></cac:PhysicalLocation>'
        '<cac:PartyTaxScheme>'
        f'<cbc:RegistrationName>{s["name"]}</cbc:RegistrationName>'
        f'<cbc:CompanyID schemeID="4" schemeName="31">{s["tax_id"]}</cbc:CompanyID>'
        '</cac:PartyTaxScheme>'
        '<cac:Contact>'
        f'<cbc:Telephone>{s["phone"]}</cbc:Telephone>'
        f'<cbc:ElectronicMail>{s["email"]}</cbc:ElectronicMail>'
        '</cac:Contact>'
        '</cac:Party></cac:AccountingSupplierParty>'
        f'{totals}'
        f'{"".join(lines)}'
        '</Invoice>'
    )


def _flat_item(tag, item):
    subtotal, tax, total = _amounts(item)
    sku = f'<codigo>{item["sku"]}</codigo>' if item.get('sku') else ''
    return (
        f'<{tag}>{sku}<nombre>{item["name"]}</nombre>'
        f'<cantidad>{item["quantity"]}</cantidad><precio>{item["price"]}</precio>'
        f'<iva_porcentaje>{item["rate"]}</iva_porcentaje><iva>{tax}</iva>'
        f'<subtotal>{subtotal}</subtotal><total>{total}</total></{tag}>'
    )


def _flat_supplier(tag):
    s = SUPPLIER
    return (
        f'<{tag}><nit>{s["tax_id"]}</nit><nombre>{s["name"]}</nombre>'
        f'<email>{s["email"]}</email><telefono>{s["phone"]}</telefono>'
        f'<direccion>{s["line"]}</direccion><ciudad>{s["city"]}</ciudad>'
        f'<departamento>{s["region"]}</departamento></{tag}>'
    )


def generic_invoice(number='FE-1001', items=None):
    """Flat <factura> document"""
    items = DEFAULT_ITEMS if items is None else items
    subtotal, tax, total = _totals(items)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<factura><numero>{number}</numero><fecha>2024-03-15</fecha>'
        '<fecha_vencimiento>2024-04-14</fecha_vencimiento>'
        f'{_flat_supplier("emisor")}'
        f'<items>{"".join(_flat_item("item", i) for i in items)}</items>'
        f'<subtotal>{subtotal}</subtotal><iva>{tax}</iva><total>{total}</total>'
        '</factura>'
    )


def unknown_invoice(number='FE-1001', items=None):
    """Document with an unrecognized root and nested containers"""
    items = DEFAULT_ITEMS if items is None else items
    subtotal, tax, total = _totals(items)
    return (
        '<comprobante>'
        f'<encabezado><numero>{number}</numero><fecha>2024-03-15</fecha>'
        '<fecha_vencimiento>2024-04-14</fecha_vencimiento></encabezado>'
        f'<partes>{_flat_supplier("proveedor")}</partes>'
        f'<cuerpo><productos>{"".join(_flat_item("producto", i) for i in items)}</productos></cuerpo>'
        f'<totales><subtotal>{subtotal}</subtotal><iva>{tax}</iva><total>{total}</total></totales>'
        '</comprobante>'
    )


def attached_document(inner, cdata=True):
    """AttachedDocument envelope carrying ``inner`` as text"""
    if cdata:
        payload = f'<![CDATA[{inner}]]>'
    else:
        payload = inner.replace('&', '&amp;').replace('<', '&lt;').replace('>', '&gt;')
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<AttachedDocument xmlns="urn:oasis:names:specification:ubl:schema:xsd:AttachedDocument-2" '
        'xmlns:cac="urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2" '
        'xmlns:cbc="urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2">'
        '<cbc:ID>AD-1</cbc:ID>'
        '<cac:SenderParty><cac:PartyTaxScheme><cbc:RegistrationName>Sender</cbc:RegistrationName>'
        '</cac:PartyTaxScheme></cac:SenderParty>'
        '<cac:Attachment><cac:ExternalReference>'
        '<cbc:MimeCode>text/xml</cbc:MimeCode><cbc:EncodingCode>UTF-8</cbc:EncodingCode>'
        f'<cbc:Description>{payload}</cbc:Description>'
        '</cac:ExternalReference></cac:Attachment>'
        '</AttachedDocument>'
    )


def make_zip(entries):
    """ZIP archive bytes from a mapping of entry name to str/bytes content"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as archive:
        for name, content in entries.items():
            if isinstance(content, str):
                content = content.encode('utf-8')
            archive.writestr(name, content)
    return buffer.getvalue()


def make_upload(xml, with_pdf=False):
    entries = {'ad0900123456.xml': xml}
    if with_pdf:
        entries['ad0900123456.pdf'] = b'%PDF-1.4 rendering'
    return make_zip(entries)


@pytest.fixture
def samples():
    """Sample document builders"""

    class Samples:
        items = DEFAULT_ITEMS
        supplier = SUPPLIER
        ubl = staticmethod(ubl_invoice)
        generic = staticmethod(generic_invoice)
        unknown = staticmethod(unknown_invoice)
        envelope = staticmethod(attached_document)
        zip = staticmethod(make_zip)
        upload = staticmethod(make_upload)

    return Samples


@pytest.fixture
def config(monkeypatch):
    """Fresh configuration backed by an in-memory SQLite database"""
    monkeypatch.delenv('EINVEX_CONFIG', raising=False)
    EinvexConfig.reset()
    cfg = EinvexConfig.from_dict({'database': {'type': 'sqlite', 'path': ':memory:'}})
    yield cfg
    EinvexConfig.reset()


@pytest.fixture
def db(config):
    database = Database(config)
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def restore_logging():
    """Undo root logger changes made by the CLI"""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
