import json
import sys
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(override=True)

from authz.config import load_config
from authz.core import build_authorizer

_authorizer = None

def _get_authorizer():
    global _authorizer
    if _authorizer is None:  # reused across warm invocations
        _authorizer = build_authorizer(load_config())
    return _authorizer

def handler(event, context):
    return _get_authorizer().handle(event)

def main(argv=None):
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) == 2 and args[0] == "shares":
        for share in _get_authorizer().store.list_shares(args[1]):
            print(f"{share.user_id}\t{share.role}\t{share.email or '-'}")
        return 0
    if len(args) != 1:
        print("usage: main.py <event.json | -> | main.py shares <checklist-id>", file=sys.stderr)
        return 2
    raw = sys.stdin.read() if args[0] == "-" else Path(args[0]).read_text(encoding="utf-8")
    print(json.dumps(handler(json.loads(raw), None)))
    return 0

if __name__ == "__main__":
    sys.exit(main())
