"""
Tests for the command-line interface
"""

import json
from decimal import Decimal

import pytest
import yaml
from click.testing import CliRunner

from einvex.cli import EXIT_DUPLICATE, EXIT_VALIDATION, cli
from einvex.config.einvex_config import EinvexConfig


@pytest.fixture
def workspace(tmp_path, monkeypatch, restore_logging):
    monkeypatch.delenv('EINVEX_CONFIG', raising=False)
    EinvexConfig.reset()
    config_path = tmp_path / 'config.yaml'
    config_path.write_text(yaml.safe_dump({
        'database': {'type': 'sqlite', 'path': str(tmp_path / 'einvex.db')},
    }))
    yield tmp_path, str(config_path)
    EinvexConfig.reset()


def invoke(config_path, *args):
    EinvexConfig.reset()
    runner = CliRunner()
    return runner.invoke(cli, ['--config', config_path, '--log-level', 'CRITICAL', *args], obj={})


class TestCli:
    """Test the init, preview and import commands"""

    def test_full_flow(self, workspace, samples):
        tmp_path, config_path = workspace
        upload = tmp_path / 'invoice.zip'
        upload.write_bytes(samples.upload(samples.ubl(), with_pdf=True))

        result = invoke(config_path, 'init')
        assert result.exit_code == 0, result.output
        assert 'Database initialized' in result.stdout

        result = invoke(config_path, 'preview', str(upload), '--tenant-id', 'tenant-a')
        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload['data']['isValid'] is True
        assert payload['data']['hasPdf'] is True

        result = invoke(config_path, 'import', str(upload), '--tenant-id', 'tenant-a',
                        '--user-id', 'user-1', '--profit-margin', '40')
        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload['message'] == 'Invoice imported successfully'
        assert Decimal(payload['data']['purchase']['items'][0]['sale_price']) == Decimal('1400')

        result = invoke(config_path, 'import', str(upload), '--tenant-id', 'tenant-a', '--user-id', 'user-1')
        assert result.exit_code == EXIT_DUPLICATE
        assert json.loads(result.stdout)['error'] == 'DUPLICATE_INVOICE'

    def test_invalid_removed_items(self, workspace, samples):
        tmp_path, config_path = workspace
        upload = tmp_path / 'invoice.zip'
        upload.write_bytes(samples.upload(samples.ubl()))
        invoke(config_path, 'init')

        result = invoke(config_path, 'import', str(upload), '--tenant-id', 'tenant-a',
                        '--user-id', 'user-1', '--removed-items', 'first')
        assert result.exit_code == EXIT_VALIDATION

    def test_invalid_invoice(self, workspace, samples):
        tmp_path, config_path = workspace
        upload = tmp_path / 'invoice.zip'
        upload.write_bytes(samples.zip({'f.xml': '<factura><numero>1</numero></factura>'}))
        invoke(config_path, 'init')

        result = invoke(config_path, 'import', str(upload), '--tenant-id', 'tenant-a', '--user-id', 'user-1')
        assert result.exit_code == EXIT_VALIDATION
        assert 'No line items found in the invoice' in json.loads(result.stdout)['errors']

    def test_unreadable_upload(self, workspace):
        tmp_path, config_path = workspace
        upload = tmp_path / 'invoice.zip'
        upload.write_bytes(b'not a zip')
        invoke(config_path, 'init')

        result = invoke(config_path, 'preview', str(upload), '--tenant-id', 'tenant-a')
        assert result.exit_code == 1
        assert json.loads(result.stdout)['success'] is False
