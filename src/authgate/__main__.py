"""Module entrypoint for `python -m authgate`."""

try:
    from .cli import run
except ImportError:
    # Executed as a plain script outside package context.
    from authgate.cli import run


if __name__ == "__main__":
    raise SystemExit(run())
