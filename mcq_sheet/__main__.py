"""
Module entry point for: python -m mcq_sheet

    python -m mcq_sheet convert <input> [options]
    python -m mcq_sheet batch <directory> [options]
    python -m mcq_sheet inspect <input>
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
