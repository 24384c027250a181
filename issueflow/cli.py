#!/usr/bin/env python3
"""issueflow CLI entrypoint."""

import argparse
import logging
import sys

from issueflow.lib.config import load_settings
from issueflow.commands import archive as cmd_archive_module
from issueflow.commands import list as cmd_list_module
from issueflow.commands import new as cmd_new_module
from issueflow.commands import run as cmd_run_module
from issueflow.commands import show as cmd_show_module


def get_settings(args):
    """Load settings from the environment, with CLI flag overrides."""
    return load_settings(issues_dir=args.issues_dir, archive_dir=args.archive_dir)


def cmd_list_open(args):
    return cmd_list_module.cmd_list_open(args, get_settings(args))


def cmd_list_resolved(args):
    return cmd_list_module.cmd_list_resolved(args, get_settings(args))


def cmd_archive(args):
    return cmd_archive_module.cmd_archive(args, get_settings(args))


def cmd_new(args):
    return cmd_new_module.cmd_new(args, get_settings(args))


def cmd_run(args):
    return cmd_run_module.cmd_run(args, get_settings(args))


def cmd_show(args):
    return cmd_show_module.cmd_show(args, get_settings(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='issueflow', description='Issue resolution workflow')
    parser.add_argument('--issues-dir', help='Issues directory (default: $ISSUEFLOW_ISSUES_DIR or ./issues)')
    parser.add_argument('--archive-dir', help='Archive directory (default: $ISSUEFLOW_ARCHIVE_DIR or ./issues/_archive)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging on stderr')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # issueflow list-open
    p_open = subparsers.add_parser('list-open', help='List issues without a resolution')
    p_open.set_defaults(func=cmd_list_open)

    # issueflow list-resolved
    p_resolved = subparsers.add_parser('list-resolved', help='List resolved issues awaiting archive')
    p_resolved.set_defaults(func=cmd_list_resolved)

    # issueflow archive
    p_archive = subparsers.add_parser('archive', help='Archive a resolved or rejected issue')
    p_archive.add_argument('id', help='Issue ID')
    p_archive.set_defaults(func=cmd_archive)

    # issueflow new
    p_new = subparsers.add_parser('new', help='Create an issue from a problem statement')
    p_new.add_argument('id', help='Issue ID')
    p_new.add_argument('--file', '-f', help='Read the problem statement from a file (default: stdin)')
    p_new.set_defaults(func=cmd_new)

    # issueflow run
    p_run = subparsers.add_parser('run', help='Run the resolution pipeline')
    p_run.add_argument('id', nargs='?', help='Issue ID')
    p_run.add_argument('--all', action='store_true', help='Run every open issue in order')
    p_run.set_defaults(func=cmd_run)

    # issueflow show
    p_show = subparsers.add_parser('show', help='Show issue status and artifacts')
    p_show.add_argument('id', help='Issue ID')
    p_show.set_defaults(func=cmd_show)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
