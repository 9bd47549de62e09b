#!/usr/bin/env python3
"""
Source-checkout entrypoint.

Runs the exporter without installing it:
  python3 ipa_export.py export --profile-type app-store
"""

import os
import sys

_HERE = os.path.dirname(os.path.abspath(__file__))
_SRC = os.path.join(_HERE, "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

# Imported as `ipa_export`, this file stands in for the `src/ipa_export/` package.
__path__ = [os.path.join(_SRC, "ipa_export")]


def main(argv: list[str] | None = None) -> int:
    from ipa_export.cli import main as _main

    return _main(argv)


if __name__ == "__main__":
    raise SystemExit(main())
