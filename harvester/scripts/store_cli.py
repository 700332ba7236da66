import argparse
import json
import sys

from harvester.jobfeed.settings import SETTINGS
from harvester.jobfeed.store import build_store


def cmd_count(store, args):
    keys = store.list_keys()
    print(f"{len(keys)} jobs stored under {store.key_prefix}")


def cmd_show(store, args):
    payload = store.get(args.job_id)
    if payload is None:
        print(f"Job {args.job_id} not found (or expired)")
        return 1
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def cmd_clear(store, args):
    if not args.yes:
        print('Refusing to clear without --yes')
        return 1
    removed = store.clear()
    print(f"Removed {removed} keys")


def main(argv=None, store=None) -> int:
    ap = argparse.ArgumentParser('store cli')
    sub = ap.add_subparsers(dest='cmd', required=True)

    cp = sub.add_parser('count')
    cp.set_defaults(func=cmd_count)

    sp = sub.add_parser('show')
    sp.add_argument('job_id')
    sp.set_defaults(func=cmd_show)

    clp = sub.add_parser('clear')
    clp.add_argument('--yes', action='store_true', help='Confirm deletion of every key in the namespace')
    clp.set_defaults(func=cmd_clear)

    args = ap.parse_args(argv)
    store = store or build_store(SETTINGS)
    try:
        return args.func(store, args) or 0
    finally:
        store.disconnect()


if __name__ == '__main__':
    sys.exit(main())
