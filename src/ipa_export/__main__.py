"""
`python -m ipa_export` entrypoint.

The installed console script `ipa-export` calls the same `ipa_export.cli:main`.
"""

from .cli import main


if __name__ == "__main__":
    raise SystemExit(main())
