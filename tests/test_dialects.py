"""
Tests for format detection and the dialect adapters
"""

from datetime import date
from decimal import Decimal

import pytest

from einvex.config.einvex_config import EinvexConfig
from einvex.exceptions import DialectError, EnvelopeUnwrapError
from einvex.processors.invoice.detector import FormatDetector
from einvex.processors.invoice.xml_tree import parse_xml


@pytest.fixture
def detector(config):
    return FormatDetector(config)


def detect(detector, xml):
    return detector.detect(parse_xml(xml))


class TestDetection:
    """Test the dialect cascade"""

    def test_standard_dialect(self, detector, samples):
        result = detect(detector, samples.ubl())
        assert result.dialect == 'standard'
        assert not result.enveloped

    def test_generic_dialect(self, detector, samples):
        assert detect(detector, samples.generic()).dialect == 'generic'

    def test_unknown_root_uses_heuristic(self, detector, samples):
        assert detect(detector, samples.unknown()).dialect == 'heuristic'

    def test_envelope_reports_inner_dialect(self, detector, samples):
        result = detect(detector, samples.envelope(samples.ubl()))
        assert result.dialect == 'standard'
        assert result.envelope_depth == 1

    def test_classify(self, detector, samples):
        assert detector.classify(parse_xml(samples.envelope(samples.ubl()))) == 'envelope'
        assert detector.classify(parse_xml(samples.ubl())) == 'standard'
        assert detector.classify(parse_xml(samples.generic())) == 'generic'
        assert detector.classify(parse_xml('<root/>')) == 'heuristic'


class TestStandardAdapter:
    """Test UBL field extraction"""

    def test_supplier(self, detector, samples):
        supplier = detect(detector, samples.ubl()).invoice.supplier
        assert supplier.tax_id == '900123456'
        assert supplier.name == 'Distribuidora Andina SAS'
        assert supplier.email == 'ventas@andina.co'
        assert supplier.phone == '6011234567'
        assert supplier.address == 'Calle 10 # 20-30, Bogota, Cundinamarca'

    def test_supplier_name_falls_back_to_registration_name(self, detector, samples):
        xml = samples.ubl().replace(
            '<cac:PartyName><cbc:Name>Distribuidora Andina SAS</cbc:Name></cac:PartyName>', ''
        )
        supplier = detect(detector, xml).invoice.supplier
        assert supplier.name == 'Distribuidora Andina SAS'

    def test_header(self, detector, samples):
        header = detect(detector, samples.ubl(number='SETP990001')).invoice.invoice
        assert header.number == 'SETP990001'
        assert header.issue_date == date(2024, 3, 15)
        assert header.due_date == date(2024, 4, 14)

    def test_lines(self, detector, samples):
        items = detect(detector, samples.ubl()).invoice.items
        assert [i.sku for i in items] == ['TOR-001', 'TUE-002', 'ARA-003']
        first = items[0]
        assert first.name == 'Tornillo hexagonal'
        assert first.quantity == Decimal('3')
        assert first.unit_price == Decimal('1000')
        assert first.subtotal == Decimal('3000')
        assert first.tax_amount == Decimal('570')
        assert first.tax_percentage == Decimal('19')
        assert first.total == Decimal('3570')
        assert items[2].tax_percentage == Decimal('0')

    def test_rate_at_tax_subtotal_level(self, detector, samples):
        xml = samples.ubl(items=[samples.items[0]]).replace(
            '<cac:TaxCategory><cbc:Percent>19.00</cbc:Percent></cac:TaxCategory>',
            '<cbc:Percent>19.00</cbc:Percent>'
        )
        item = detect(detector, xml).invoice.items[0]
        assert item.tax_percentage == Decimal('19')

    def test_header_totals(self, detector, samples):
        totals = detect(detector, samples.ubl()).invoice.totals
        assert totals.source == 'header'
        assert totals.subtotal == Decimal('5900')
        assert totals.tax == Decimal('1045')
        assert totals.total == Decimal('6945')
        assert totals.discrepancies == []

    def test_tax_back_computed_without_tax_total(self, detector, samples):
        xml = samples.ubl(items=[samples.items[0]]).replace(
            '<cac:TaxTotal><cbc:TaxAmount currencyID="COP">570.00</cbc:TaxAmount></cac:TaxTotal>'
            '<cac:LegalMonetaryTotal>',
            '<cac:LegalMonetaryTotal>'
        )
        totals = detect(detector, xml).invoice.totals
        assert totals.tax == Decimal('570')
        assert totals.total == Decimal('3570')

    def test_missing_sku_is_synthesized(self, detector, samples):
        items = [dict(samples.items[0], sku=None), samples.items[1]]
        result = detect(detector, samples.ubl(items=items)).invoice.items
        assert result[0].sku == 'TEMP-0001'
        assert result[0].sku_synthesized is True
        assert result[1].sku_synthesized is False

    def test_unparsable_numbers_do_not_raise(self, detector, samples):
        xml = samples.ubl(items=[samples.items[0]]).replace(
            '<cbc:InvoicedQuantity unitCode="EA">3</cbc:InvoicedQuantity>',
            '<cbc:InvoicedQuantity unitCode="EA">three</cbc:InvoicedQuantity>'
        )
        item = detect(detector, xml).invoice.items[0]
        assert item.quantity == Decimal('1')
        assert item.subtotal == Decimal('3000')

    def test_oversized_amounts_are_not_provided(self, detector, samples):
        xml = samples.ubl(items=[samples.items[0]]).replace(
            '<cbc:LineExtensionAmount currencyID="COP">3000.00</cbc:LineExtensionAmount>',
            '<cbc:LineExtensionAmount currencyID="COP">1E30</cbc:LineExtensionAmount>'
        )
        item = detect(detector, xml).invoice.items[0]
        assert item.subtotal == Decimal('3000')

    def test_oversized_price_does_not_raise(self, detector):
        xml = (
            '<factura><numero>F-1</numero><emisor><nit>900</nit><nombre>Acme</nombre></emisor>'
            '<items><item><nombre>A</nombre><cantidad>2</cantidad>'
            '<precio>100000000000000000000000000000</precio>'
            '<iva_porcentaje>19</iva_porcentaje></item></items></factura>'
        )
        item = detect(detector, xml).invoice.items[0]
        assert item.unit_price == Decimal('0')
        assert item.subtotal == Decimal('0')
        assert item.total == Decimal('0')


class TestGenericAdapter:
    """Test the flat dialect"""

    def test_fields(self, detector, samples):
        invoice = detect(detector, samples.generic(number='F-77')).invoice
        assert invoice.invoice.number == 'F-77'
        assert invoice.supplier.tax_id == '900123456'
        assert len(invoice.items) == 3
        assert invoice.items[1].name == 'Tuerca de seguridad'

    def test_alternative_containers(self, detector):
        xml = (
            '<factura><id>9</id><proveedor><nombre>Acme</nombre></proveedor>'
            '<productos><producto><descripcion>Clavo</descripcion><sku>C-1</sku>'
            '<quantity>2</quantity><price>50</price><tax_percent>5</tax_percent></producto></productos>'
            '</factura>'
        )
        invoice = detect(detector, xml).invoice
        assert invoice.invoice.number == '9'
        assert invoice.supplier.name == 'Acme'
        item = invoice.items[0]
        assert (item.name, item.sku, item.subtotal, item.tax_amount) == (
            'Clavo', 'C-1', Decimal('100'), Decimal('5')
        )
        assert invoice.totals.source == 'items'


class TestHeuristicAdapter:
    """Test the fallback extractor"""

    def test_nested_containers(self, detector, samples):
        invoice = detect(detector, samples.unknown(number='X-5')).invoice
        assert invoice.invoice.number == 'X-5'
        assert invoice.supplier.name == 'Distribuidora Andina SAS'
        assert len(invoice.items) == 3
        assert invoice.totals.source == 'header'

    def test_never_raises_on_unrelated_document(self, detector):
        invoice = detect(detector, '<catalog><book><title>Dune</title></book></catalog>').invoice
        assert invoice.items == []
        assert invoice.supplier.name is None
        assert invoice.invoice.number is None

    def test_header_subtotal_not_taken_from_lines(self, detector):
        xml = (
            '<doc><numero>1</numero><lineas><linea><nombre>A</nombre><cantidad>1</cantidad>'
            '<precio>10</precio><subtotal>10</subtotal><iva_porcentaje>0</iva_porcentaje></linea>'
            '<linea><nombre>B</nombre><cantidad>1</cantidad><precio>5</precio>'
            '<subtotal>5</subtotal><iva_porcentaje>0</iva_porcentaje></linea></lineas></doc>'
        )
        totals = detect(detector, xml).invoice.totals
        assert totals.source == 'items'
        assert totals.subtotal == Decimal('15')

    def test_number_not_taken_from_supplier_id(self, detector):
        xml = (
            '<documento><emisor><id>900123456</id><nit>900123456</nit><nombre>Acme</nombre></emisor>'
            '<cabecera><numero>F-77</numero><fecha>2024-03-15</fecha></cabecera>'
            '<items><item><id>1</id><nombre>A</nombre><cantidad>1</cantidad><precio>10</precio>'
            '</item></items></documento>'
        )
        invoice = detect(detector, xml).invoice
        assert invoice.invoice.number == 'F-77'
        assert invoice.invoice.issue_date == date(2024, 3, 15)
        assert invoice.supplier.tax_id == '900123456'

    def test_bare_id_not_taken_from_lines(self, detector):
        xml = (
            '<documento><lines><line><id>1</id><name>A</name><qty>1</qty><price>10</price></line></lines>'
            '<cabecera><id>F-9</id></cabecera></documento>'
        )
        invoice = detect(detector, xml).invoice
        assert invoice.invoice.number == 'F-9'
        assert invoice.items[0].quantity == Decimal('1')

    def test_supplier_fields_at_root(self, detector):
        xml = (
            '<documento><numero>F-1</numero><nombre>Acme</nombre><nit>900</nit>'
            '<items><item><nombre>Clavo</nombre><cantidad>2</cantidad><precio>50</precio>'
            '</item></items></documento>'
        )
        invoice = detect(detector, xml).invoice
        assert invoice.supplier.name == 'Acme'
        assert invoice.supplier.tax_id == '900'
        assert invoice.items[0].name == 'Clavo'

    def test_english_terms(self, detector):
        xml = (
            '<document><invoicenumber>INV-3</invoicenumber><date>2024-05-02</date>'
            '<vendor><taxid>800</taxid><name>Globex</name></vendor>'
            '<detail><row><description>Bolt</description><code>B-1</code><qty>4</qty>'
            '<price>2.50</price></row></detail>'
            '<totals><subtotal>10</subtotal><tax>0</tax><grandtotal>10</grandtotal></totals>'
            '</document>'
        )
        invoice = detect(detector, xml).invoice
        assert invoice.invoice.number == 'INV-3'
        assert invoice.invoice.issue_date == date(2024, 5, 2)
        assert invoice.supplier.tax_id == '800'
        assert invoice.supplier.name == 'Globex'
        item = invoice.items[0]
        assert (item.name, item.sku, item.quantity) == ('Bolt', 'B-1', Decimal('4'))
        assert invoice.totals.total == Decimal('10.00')


class TestCrossDialectEquality:
    """The same logical invoice reads identically in every dialect"""

    def test_three_dialects_are_equal(self, detector, samples):
        standard = detect(detector, samples.ubl()).invoice
        generic = detect(detector, samples.generic()).invoice
        heuristic = detect(detector, samples.unknown()).invoice
        assert standard == generic
        assert standard == heuristic

    def test_envelope_equals_inner_document(self, detector, samples):
        inner = samples.ubl()
        assert detect(detector, samples.envelope(inner)).invoice == detect(detector, inner).invoice

    def test_escaped_envelope_equals_inner_document(self, detector, samples):
        inner = samples.ubl()
        wrapped = samples.envelope(inner, cdata=False)
        assert detect(detector, wrapped).invoice == detect(detector, inner).invoice

    def test_envelope_around_generic_document(self, detector, samples):
        inner = samples.generic()
        result = detect(detector, samples.envelope(inner))
        assert result.dialect == 'generic'
        assert result.invoice == detect(detector, inner).invoice


class TestEnvelopeErrors:
    """Envelopes that cannot be unwrapped never fall back to heuristics"""

    def test_missing_chain(self, detector):
        with pytest.raises(EnvelopeUnwrapError):
            detect(detector, '<AttachedDocument><ID>1</ID></AttachedDocument>')

    def test_empty_description(self, detector):
        xml = (
            '<AttachedDocument><Attachment><ExternalReference><Description>  </Description>'
            '</ExternalReference></Attachment></AttachedDocument>'
        )
        with pytest.raises(EnvelopeUnwrapError):
            detect(detector, xml)

    def test_inner_not_well_formed(self, detector, samples):
        with pytest.raises(EnvelopeUnwrapError) as exc_info:
            detect(detector, samples.envelope('<Invoice><ID>1</Invoice>'))
        assert isinstance(exc_info.value, DialectError)
        assert exc_info.value.dialect == 'envelope'

    def test_nesting_depth_is_bounded(self, samples):
        EinvexConfig.reset()
        config = EinvexConfig.from_dict({'extraction': {'max_envelope_depth': 1}})
        detector = FormatDetector(config)
        doubly_wrapped = samples.envelope(samples.envelope(samples.ubl()), cdata=False)
        with pytest.raises(EnvelopeUnwrapError):
            detect(detector, doubly_wrapped)
        EinvexConfig.reset()

    def test_nesting_within_depth(self, detector, samples):
        doubly_wrapped = samples.envelope(samples.envelope(samples.ubl()), cdata=False)
        result = detect(detector, doubly_wrapped)
        assert result.envelope_depth == 2
        assert result.invoice.invoice.number == 'FE-1001'
