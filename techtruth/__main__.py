"""Module entry point: python -m techtruth ..."""

from __future__ import annotations

from techtruth.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
