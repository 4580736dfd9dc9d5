"""Entrypoint for `python -m vibestream`."""

from .cli import main


if __name__ == "__main__":
    main()
