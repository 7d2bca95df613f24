"""
Escrow key utility.

    python -m deadswitch.keytool generate [--out PATH]
    python -m deadswitch.keytool validate
"""

import argparse
import sys

from deadswitch.core.errors import ConfigurationError
from deadswitch.core.keys import generate_key, load_escrow_key, write_key_file


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="deadswitch-keytool", description=__doc__)
    commands = parser.add_subparsers(dest="command", required=True)

    generate = commands.add_parser("generate", help="Generate a new 32-byte escrow key")
    generate.add_argument("--out", help="Write the key to this file with mode 0600")
    commands.add_parser("validate", help="Check the configured escrow key source")

    args = parser.parse_args(argv)

    if args.command == "generate":
        if args.out:
            try:
                write_key_file(args.out)
            except FileExistsError:
                print(f"Refusing to overwrite existing file {args.out}", file=sys.stderr)
                return 1
            print(f"Escrow key written to {args.out}")
        else:
            print(generate_key())
        return 0

    try:
        load_escrow_key()
    except ConfigurationError as exc:
        print(f"Invalid escrow key: {exc}", file=sys.stderr)
        return 1
    print("Escrow key is valid")
    return 0


if __name__ == "__main__":
    sys.exit(main())
