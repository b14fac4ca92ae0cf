"""Allow running Folio with ``python -m folio``."""

from .cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
