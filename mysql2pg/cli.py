"""
Command line entry point: mig [config] | mig -c <config>
"""
import argparse
import logging
import sys
from typing import List, Optional

from mysql2pg import __version__
from mysql2pg.config import load_config
from mysql2pg.errors import ConfigError, MigrationError
from mysql2pg.log import close_logging, setup_logging
from mysql2pg.notify import SlackNotifier
from mysql2pg.reporter import ProgressBar, print_inconsistencies, print_summary, print_version_table
from mysql2pg.scheduler import MigrationManager
from mysql2pg.source import MySQLSource
from mysql2pg.target import PostgresTarget

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='mig',
        description='Offline MySQL to PostgreSQL migration: schema, data, views, indexes, functions and users',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with a config file
  mig config.yaml

  # Same, with the flag form
  mig -c /etc/mig/config.yaml

  # Connection test only: set mysql.test_only or postgresql.test_only to true
  mig -c config.yaml
        """
    )
    parser.add_argument('config', nargs='?', help='Path to the YAML config file')
    parser.add_argument('-c', '--config', dest='config_flag', metavar='PATH', help='Path to the YAML config file')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def run(argv: Optional[List[str]] = None) -> int:
    """Run a migration and return the process exit status"""
    parser = build_parser()
    args = parser.parse_args(argv)
    path = args.config_flag or args.config
    if not path:
        parser.print_help()
        return 0

    try:
        config = load_config(path)
    except ConfigError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    setup_logging(config.run)
    source = MySQLSource(config.mysql, config.options)
    target = PostgresTarget(config.postgresql, use_copy=config.options.use_copy)
    notifier = SlackNotifier()
    try:
        try:
            source.ping()
            target.ping()
            print_version_table(source.version(), target.version())
        except MigrationError as e:
            print(f"❌ Connection failed: {e}")
            logger.error(f"Connection failed: {e}")
            return 1

        if config.mysql.test_only or config.postgresql.test_only:
            print("✅ Connection test passed")
            return 0

        progress = ProgressBar(enabled=config.run.show_progress and config.run.show_console_logs)
        manager = MigrationManager(config, source, target, progress)
        try:
            state = manager.run()
        except Exception as e:
            logger.error(f"Migration failed: {e}")
            print(f"\n❌ Migration failed: {e}")
            print(f"   See {config.run.error_log_path} for details")
            print_summary(manager.state.stats)
            notifier.send_summary(manager.state, config.mysql.database, error=str(e))
            return 1

        print_summary(state.stats)
        print_inconsistencies(state.inconsistencies)
        if state.failed_tables:
            print(f"\n⚠️  Data sync failed for {len(state.failed_tables)} table(s): {', '.join(state.failed_tables)}")
            print(f"   See {config.run.error_log_path} for details")
        else:
            print("\n✅ Migration completed")
        notifier.send_summary(state, config.mysql.database)
        return 0
    finally:
        source.close()
        target.close()
        close_logging()


def main():
    sys.exit(run())


if __name__ == '__main__':
    main()
