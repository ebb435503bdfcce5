"""
Module entry point for: python -m solutionbot

Allows running the CLI directly as a module:
    python -m solutionbot answer <problem> [options]
    python -m solutionbot build-cache [--force] [--source NAME]
    python -m solutionbot schedule list
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
