"""Console-script entry point for :mod:`plugscan` (``python -m plugscan``)."""

from __future__ import annotations

from typing import Sequence

from plugscan.cli import create_app


def main(argv: Sequence[str] | None = None) -> None:
    """Run the CLI with ``argv`` (defaults to ``sys.argv[1:]``)."""

    create_app()(args=list(argv) if argv is not None else None, prog_name="plugscan")


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    main()


__all__ = ["main"]
