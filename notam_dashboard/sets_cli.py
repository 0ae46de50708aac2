#!/usr/bin/env python3
"""Manage configured airport codes, named sets and the local cache."""
import argparse
import json
import sys
import logging
from notam_dashboard.config import Config
from notam_dashboard.database import NotamStore
from notam_dashboard.main import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Airport codes and sets')
    parser.add_argument('--db', default=None, help='Database path (default: DATABASE_PATH)')
    sub = parser.add_subparsers(dest='command', required=True)

    add = sub.add_parser('add', help='Add airport codes')
    add.add_argument('codes', nargs='+')

    remove = sub.add_parser('remove', help='Remove an airport code')
    remove.add_argument('code')

    sub.add_parser('list', help='List configured codes')

    save_set = sub.add_parser('save-set', help='Save codes as a named set (default: configured codes)')
    save_set.add_argument('name')
    save_set.add_argument('codes', nargs='*')

    load_set = sub.add_parser('load-set', help='Replace configured codes with a named set')
    load_set.add_argument('name')

    sub.add_parser('sets', help='List named sets')

    delete_set = sub.add_parser('delete-set', help='Delete a named set')
    delete_set.add_argument('name')

    export = sub.add_parser('export', help='Export codes and sets as JSON')
    export.add_argument('file', nargs='?', help='Output file (default: stdout)')

    import_ = sub.add_parser('import', help='Import codes and sets from JSON')
    import_.add_argument('file')

    sub.add_parser('clear-cache', help='Discard cached NOTAM records')
    return parser


def run(args: argparse.Namespace, store: NotamStore) -> int:
    """Execute one command. Returns the process exit code."""
    if args.command == 'add':
        added = store.add_codes(args.codes)
        print(f"Added {len(added)} code(s): {', '.join(added) or 'none'}")

    elif args.command == 'remove':
        code = args.code.strip().upper()
        if not store.remove_code(code):
            print(f"{code} is not configured")
            return 1
        print(f"Removed {code}")

    elif args.command == 'list':
        print(' '.join(store.get_codes()) or 'No codes configured.')

    elif args.command == 'save-set':
        codes = store.add_set(args.name, args.codes or store.get_codes())
        print(f"Saved set '{args.name}': {' '.join(codes)}")

    elif args.command == 'load-set':
        codes = store.get_set(args.name)
        if codes is None:
            print(f"Unknown set: {args.name}")
            return 1
        store.save_codes(codes)
        print(f"Loaded set '{args.name}': {' '.join(codes)}")

    elif args.command == 'sets':
        sets = store.get_sets()
        if not sets:
            print('No sets saved.')
        for name, codes in sets.items():
            print(f"{name}: {' '.join(codes)}")

    elif args.command == 'delete-set':
        if not store.delete_set(args.name):
            print(f"Unknown set: {args.name}")
            return 1
        print(f"Deleted set '{args.name}'")

    elif args.command == 'export':
        text = json.dumps(store.export_data(), indent=2)
        if args.file:
            with open(args.file, 'w') as f:
                f.write(text)
            print(f"Exported to {args.file}")
        else:
            print(text)

    elif args.command == 'import':
        with open(args.file, 'r') as f:
            counts = store.import_data(json.load(f))
        print(f"Imported {counts['codes']} code(s) and {counts['sets']} set(s)")

    elif args.command == 'clear-cache':
        count = store.clear_cache()
        print(f"Cleared {count} cached code(s)")

    return 0


def main(argv=None):
    setup_logging()
    args = build_parser().parse_args(argv)
    store = NotamStore(args.db or Config.DATABASE_PATH)

    try:
        sys.exit(run(args, store))
    except ValueError as e:
        logger.error(str(e))
        sys.exit(2)


if __name__ == '__main__':
    main()
