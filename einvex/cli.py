"""
EInvEx CLI commands

This module provides command-line interface for invoice ingestion.

Exit codes: 0 success, 1 error, 2 validation failure, 3 duplicate invoice.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from einvex.config.einvex_config import EinvexConfig
from einvex.context import UserContext
from einvex.db.connection import Database
from einvex.exceptions import DuplicateInvoiceError, EinvexError, InvoiceValidationError
from einvex.models.invoice import ImportOptions
from einvex.services.invoice_import_service import InvoiceImportService

EXIT_ERROR = 1
EXIT_VALIDATION = 2
EXIT_DUPLICATE = 3


def setup_logging(config: EinvexConfig) -> None:
    """Configure the root logger from the ``logging`` config section"""
    logging_config = config.get_logging_config()
    handlers = [logging.StreamHandler(sys.stderr)]
    if logging_config.get('file'):
        log_file = Path(logging_config['file'])
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(logging_config.get('level', 'INFO')).upper(), logging.INFO),
        format=logging_config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
        handlers=handlers,
        force=True
    )


def _load_config(config_path: Optional[str], log_level: Optional[str]) -> EinvexConfig:
    config = EinvexConfig.from_file(config_path) if config_path else EinvexConfig()
    if log_level:
        config.set('logging.level', log_level)
    setup_logging(config)
    return config


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@click.group()
@click.option('--config', 'config_path', type=click.Path(exists=True), help='Path to configuration file')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']), help='Logging level')
@click.pass_context
def cli(ctx, config_path, log_level):
    """EInvEx command-line interface"""
    ctx.ensure_object(dict)
    try:
        ctx.obj['config'] = _load_config(config_path, log_level)
    except EinvexError as e:
        click.echo(f'Error: {e}', err=True)
        ctx.exit(EXIT_ERROR)


@cli.command()
@click.pass_context
def init(ctx):
    """Create the database tables"""
    config = ctx.obj['config']
    try:
        db = Database(config)
        db.create_tables()
        db.dispose()
    except Exception as e:
        click.echo(f'Error: {e}', err=True)
        ctx.exit(EXIT_ERROR)
    click.echo(f"Database initialized ({config.get('database.type')})")


@cli.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--tenant-id', required=True, help='Tenant the invoice belongs to')
@click.option('--user-id', default='cli_user', show_default=True, help='Requesting user')
@click.option('--profit-margin', help='Profit margin percentage for new products')
@click.option('--supplier-name', help='Override for the supplier display name')
@click.option('--removed-items', help='JSON array of zero-based line indices to exclude')
@click.option('--shipping-cost', help='Shipping cost added to the purchase total')
@click.option('--discount-amount', help='Discount subtracted from the purchase total')
@click.pass_context
def preview(ctx, file, tenant_id, user_id, **form):
    """Show what importing FILE would do, without writing anything"""
    config = ctx.obj['config']
    _run(ctx, config, 'preview', file, tenant_id, user_id, form)


@cli.command(name='import')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--tenant-id', required=True, help='Tenant the invoice belongs to')
@click.option('--user-id', required=True, help='User recorded as the purchase creator')
@click.option('--profit-margin', help='Profit margin percentage for new products')
@click.option('--supplier-name', help='Override for the supplier display name')
@click.option('--removed-items', help='JSON array of zero-based line indices to exclude')
@click.option('--shipping-cost', help='Shipping cost added to the purchase total')
@click.option('--discount-amount', help='Discount subtracted from the purchase total')
@click.pass_context
def import_command(ctx, file, tenant_id, user_id, **form):
    """Import FILE as a draft purchase"""
    config = ctx.obj['config']
    _run(ctx, config, 'import', file, tenant_id, user_id, form)


def _run(ctx, config: EinvexConfig, action: str, file: str, tenant_id: str, user_id: str, form: dict) -> None:
    logger = logging.getLogger(__name__)
    db = None
    try:
        options = ImportOptions.from_form(form, config.get('import.default_profit_margin'))
    except ValueError as e:
        _echo_json({'success': False, 'message': 'Invalid import options', 'errors': [str(e)]})
        ctx.exit(EXIT_VALIDATION)

    user = UserContext(user_id=user_id, tenant_id=tenant_id)
    data = Path(file).read_bytes()
    exit_code = 0
    try:
        db = Database(config)
        service = InvoiceImportService(db, config)
        if action == 'preview':
            result = service.preview(data, user, options)
            _echo_json(result.to_response())
            if not result.is_valid:
                exit_code = EXIT_DUPLICATE if result.is_duplicate else EXIT_VALIDATION
        else:
            result = service.import_invoice(data, user, options)
            _echo_json(result.to_response())
    except InvoiceValidationError as e:
        _echo_json({'success': False, 'message': 'Invoice data is invalid', 'errors': e.errors})
        exit_code = EXIT_VALIDATION
    except DuplicateInvoiceError as e:
        _echo_json(e.to_response())
        exit_code = EXIT_DUPLICATE
    except EinvexError as e:
        logger.debug(f"{action} failed", exc_info=True)
        _echo_json({'success': False, 'message': e.message, 'details': e.details})
        exit_code = EXIT_ERROR
    finally:
        if db is not None:
            db.dispose()
    ctx.exit(exit_code)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
