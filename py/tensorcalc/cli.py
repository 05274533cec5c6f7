"""Command-line entry point: evaluate a JSON Calculate request."""

import argparse
import json
import logging
import sys

from . import config
from .api import CalculateRequest
from .calculator import Calculator
from .engines import available_engines
from .errors import CalculationError

logger = logging.getLogger(__name__)


def _read_request(path):
    if path == '-':
        return json.load(sys.stdin)
    with open(path) as f:
        return json.load(f)


def cmd_calculate(args):
    try:
        raw = _read_request(args.request)
    except json.JSONDecodeError as e:
        print(f'INVALID_ARGUMENT: request is not valid JSON: {e}', file=sys.stderr)
        return 1
    request = CalculateRequest.from_dict(raw)
    response = Calculator(args.engine).calculate(request)
    text = json.dumps(response.to_dict(), indent=args.indent)
    if args.output:
        with open(args.output, 'w') as f:
            f.write(text + '\n')
    else:
        print(text)
    return 0


def cmd_engines(args):
    for name in available_engines():
        marker = '*' if name == config.engine() else ' '
        print(f'{marker} {name}')
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog='tensorcalc', description='Evaluate tensor computation graphs')
    parser.add_argument('-v', '--verbose', action='store_true', help='enable debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('calculate', help='evaluate a JSON Calculate request')
    p.add_argument('request', help="path to request JSON, or '-' for stdin")
    p.add_argument('--engine', default=None, help='engine name (default: $TENSORCALC_ENGINE or fallback)')
    p.add_argument('--output', '-o', default=None, help='write response JSON here instead of stdout')
    p.add_argument('--indent', type=int, default=None)
    p.set_defaults(func=cmd_calculate)

    p = sub.add_parser('engines', help='list engines usable on this host')
    p.set_defaults(func=cmd_engines)

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else config.log_level(),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    try:
        return args.func(args)
    except CalculationError as e:
        print(f'{e.code}: {e}', file=sys.stderr)
        return 1
    except OSError as e:
        print(f'error: {e}', file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
