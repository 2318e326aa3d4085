"""
Command line entry point.

    clusterdump run                 one backup run, exit code 0/1
    clusterdump schedule            run backups from an in-process cron schedule
"""

import sys
import logging
from argparse import ArgumentParser

from clusterdump import __version__, configure_logging
from clusterdump.config import get_config


logger = logging.getLogger(__name__)


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog='clusterdump', description='Backup of a replicated MariaDB cluster')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--env', default=None, help='configuration name (development, testing, production)')
    parser.add_argument('--quiet', action='store_true', help='log to the log file only')

    subparsers = parser.add_subparsers(dest='command')
    subparsers.add_parser('run', help='perform one backup run')

    schedule_parser = subparsers.add_parser('schedule', help='run backups on a cron schedule')
    schedule_parser.add_argument('--cron', default=None, help='crontab expression (default: BACKUP_CRON)')

    return parser


def main(argv=None) -> int:
    """main"""

    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or 'run'

    config = get_config(args.env)
    configure_logging(config, console=not args.quiet)

    if command == 'schedule':
        from clusterdump.scheduler import init_scheduler, start_scheduler
        init_scheduler(config, args.cron)
        start_scheduler()
        return 0

    from clusterdump.backup.executor import run_backup
    run = run_backup(config)
    if run.exit_code != 0:
        print(f"dying. check {config['LOG_FILE']} for details.", file=sys.stderr)
    return run.exit_code


if __name__ == '__main__':
    sys.exit(main())
