"""CLI entry point for nested cross-validation.

Usage:
    python -m src.nested_cv [--features PATH] [--output-dir PATH] [--threshold-policy oof|test]
"""

from src.main import main


if __name__ == "__main__":
    raise SystemExit(main())
