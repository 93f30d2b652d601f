"""Command-line interface for Academy Currency."""

import argparse
import sys
from datetime import timedelta
from pathlib import Path
from uuid import UUID

from academy_currency.config import DatabaseType, get_settings
from academy_currency.container import Container
from academy_currency.domain.conversions import ConversionContext, ConversionStatistics
from academy_currency.exceptions import AcademyCurrencyError
from academy_currency.logging_config import configure_cli_logging
from academy_currency.repositories.sqlite import SQLiteDatabase
from academy_currency.services.conversion import normalize_currency_pair


def get_default_db_path() -> Path:
    """Get the default database path in user's home directory."""
    return Path.home() / ".academy_currency" / "academy.db"


def _db_path(args: argparse.Namespace) -> Path:
    return Path(args.database) if args.database else get_default_db_path()


def _open_container(db_path: Path) -> Container:
    settings = get_settings().model_copy(
        update={"database_type": DatabaseType.SQLITE, "sqlite_path": db_path}
    )
    return Container(settings=settings)


def _context(args: argparse.Namespace) -> ConversionContext:
    return ConversionContext(
        tenant_id=args.tenant,
        user_id=args.user,
        role=args.role,
        user_email=args.email,
        user_agent="academy-currency-cli",
    )


def _print_statistics(statistics: ConversionStatistics) -> None:
    for key, value in statistics.to_dict().items():
        print(f"  {key}: {value}")


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize a new database."""
    db_path = _db_path(args)

    if db_path.exists() and not args.force:
        print(f"Database already exists at {db_path}")
        print("Use --force to reinitialize (WARNING: will delete existing data)")
        return 1

    if db_path.exists() and args.force:
        db_path.unlink()

    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = SQLiteDatabase(db_path)
    db.initialize()
    db.close()

    print(f"Initialized database at {db_path}")
    return 0


def cmd_rate(args: argparse.Namespace) -> int:
    """Preview the live exchange rate for a currency pair."""
    try:
        from_code, to_code = normalize_currency_pair(
            args.from_currency, args.to_currency
        )
        with Container() as container:
            quote = container.rate_resolver.quote(from_code, to_code)
    except AcademyCurrencyError as e:
        print(f"Error: {e.message}")
        return 1

    print(f"{quote.from_currency}/{quote.to_currency} = {quote.rate} ({quote.source.value})")
    return 0


def cmd_convert(args: argparse.Namespace) -> int:
    """Convert every monetary field of a tenant to a new currency."""
    db_path = _db_path(args)
    if not db_path.exists():
        print(f"Database not found: {db_path}")
        return 1

    with _open_container(db_path) as container:
        try:
            result = container.conversion_service.convert(
                _context(args), args.from_currency, args.to_currency
            )
        except AcademyCurrencyError as e:
            print(f"Error: {e.message}")
            for key, value in e.context.items():
                print(f"  {key}: {value}")
            details = getattr(e, "details", None)
            if details:
                print(f"  details: {details}")
            return 1

    if result.conversion_id is None:
        print("No conversion needed - currencies are the same")
        return 0

    print(
        f"Converted {result.from_currency} -> {result.to_currency} "
        f"at {result.exchange_rate} ({result.rate_source.value})"
    )
    print(f"Conversion ID: {result.conversion_id}")
    if result.statistics is not None:
        _print_statistics(result.statistics)
    return 0


def cmd_conversions(args: argparse.Namespace) -> int:
    """List a tenant's conversion attempts."""
    db_path = _db_path(args)
    if not db_path.exists():
        print(f"Database not found: {db_path}")
        return 1

    with _open_container(db_path) as container:
        logs = container.conversion_log_service.list_for_tenant(
            args.tenant, limit=args.limit
        )

    if not logs:
        print(f"No conversions found for tenant {args.tenant}")
        return 0

    print(f"{'Timestamp':<34} {'Status':<8} {'Pair':<9} {'Rate':>14} {'Records':>8}  ID")
    print("-" * 116)
    for log in logs:
        pair = f"{log.from_currency}/{log.to_currency}"
        print(
            f"{log.timestamp.isoformat():<34} {log.status.value:<8} {pair:<9} "
            f"{str(log.exchange_rate):>14} "
            f"{log.statistics.total_records_updated:>8}  {log.id}"
        )
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    """Show the per-document history written by a conversion."""
    db_path = _db_path(args)
    if not db_path.exists():
        print(f"Database not found: {db_path}")
        return 1

    try:
        conversion_id = UUID(args.conversion_id)
    except ValueError:
        print(f"Error: Invalid conversion ID: {args.conversion_id}")
        return 1

    with _open_container(db_path) as container:
        try:
            log = container.conversion_log_service.get_for_tenant(
                args.tenant, conversion_id
            )
        except AcademyCurrencyError as e:
            print(f"Error: {e.message}")
            return 1
        records = container.history_writer.list_for_conversion(args.tenant, log.id)

    print(
        f"Conversion {log.id}: {log.from_currency} -> {log.to_currency} "
        f"at {log.exchange_rate} [{log.status.value}]"
    )
    if not records:
        print("No documents were changed")
        return 0
    for record in records:
        print(f"  {record.entity_type.value} {record.entity_id}")
        for path, original in record.original_values.items():
            print(f"    {path}: {original} -> {record.converted_values[path]}")
    return 0


def cmd_reverse(args: argparse.Namespace) -> int:
    """Reverse a successful conversion."""
    db_path = _db_path(args)
    if not db_path.exists():
        print(f"Database not found: {db_path}")
        return 1

    try:
        conversion_id = UUID(args.conversion_id)
    except ValueError:
        print(f"Error: Invalid conversion ID: {args.conversion_id}")
        return 1

    with _open_container(db_path) as container:
        try:
            result = container.reversal_service.reverse(_context(args), conversion_id)
        except AcademyCurrencyError as e:
            print(f"Error: {e.message}")
            return 1

    print(f"Reversed conversion {result.reversed_conversion_id}")
    print(f"Reversal ID: {result.conversion_id}")
    _print_statistics(result.statistics)
    print(f"  fieldsSkipped: {result.fields_skipped}")
    return 0


def cmd_token(args: argparse.Namespace) -> int:
    """Issue a session token for calling the API."""
    container = Container()
    token = container.session_service.issue(
        user_id=args.user,
        tenant_id=args.tenant,
        role=args.role,
        email=args.email,
        expires_in=timedelta(minutes=args.minutes) if args.minutes else None,
    )
    print(token)
    return 0


def _add_actor_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--tenant", "-t", required=True, help="Tenant (academy) ID")
    parser.add_argument("--user", "-u", required=True, help="Acting user ID")
    parser.add_argument("--role", "-r", default="admin", help="Acting user role")
    parser.add_argument("--email", default=None, help="Acting user email")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="academy-currency",
        description="Academy Currency - tenant-wide currency re-denomination",
    )
    parser.add_argument(
        "--database",
        "-d",
        help="Path to SQLite database file",
        default=None,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init command
    init_parser = subparsers.add_parser("init", help="Initialize a new database")
    init_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Force reinitialization (deletes existing data)",
    )
    init_parser.set_defaults(func=cmd_init)

    # rate command
    rate_parser = subparsers.add_parser("rate", help="Preview a live exchange rate")
    rate_parser.add_argument("from_currency", help="Source currency code (e.g., USD)")
    rate_parser.add_argument("to_currency", help="Target currency code (e.g., EUR)")
    rate_parser.set_defaults(func=cmd_rate)

    # convert command
    convert_parser = subparsers.add_parser(
        "convert", help="Convert a tenant's monetary fields"
    )
    _add_actor_arguments(convert_parser)
    convert_parser.add_argument("from_currency", help="Current currency code")
    convert_parser.add_argument("to_currency", help="New currency code")
    convert_parser.set_defaults(func=cmd_convert)

    # conversions command
    conversions_parser = subparsers.add_parser(
        "conversions", help="List a tenant's conversions"
    )
    conversions_parser.add_argument(
        "--tenant", "-t", required=True, help="Tenant (academy) ID"
    )
    conversions_parser.add_argument(
        "--limit", "-n", type=int, default=50, help="Maximum rows (default: 50)"
    )
    conversions_parser.set_defaults(func=cmd_conversions)

    # history command
    history_parser = subparsers.add_parser(
        "history", help="Show the documents changed by a conversion"
    )
    history_parser.add_argument(
        "--tenant", "-t", required=True, help="Tenant (academy) ID"
    )
    history_parser.add_argument("conversion_id", help="Conversion ID")
    history_parser.set_defaults(func=cmd_history)

    # reverse command
    reverse_parser = subparsers.add_parser(
        "reverse", help="Reverse a successful conversion"
    )
    _add_actor_arguments(reverse_parser)
    reverse_parser.add_argument("conversion_id", help="Conversion ID to reverse")
    reverse_parser.set_defaults(func=cmd_reverse)

    # token command
    token_parser = subparsers.add_parser("token", help="Issue an API session token")
    _add_actor_arguments(token_parser)
    token_parser.add_argument(
        "--minutes", type=int, default=None, help="Token lifetime in minutes"
    )
    token_parser.set_defaults(func=cmd_token)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_cli_logging()
    result: int = args.func(args)
    return result


if __name__ == "__main__":
    sys.exit(main())
