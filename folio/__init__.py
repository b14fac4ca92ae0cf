"""Folio incremental static site generator.

This package turns a tree of Markdown files with YAML front matter into a
static site. Builds are incremental: a fingerprint cache records every source
and template file, and only the items that changed are rendered again, in
parallel, into one or more output formats (HTML, JSON, plain text, Atom).

The main entry point is the CLI module, which provides the ``build`` and
``watch`` commands; ``folio.build.build_site`` is the programmatic entry point.

Architecture follows SOLID principles:
- Single Responsibility: Each module handles one concern (content, cache, templates, scheduling)
- Open/Closed: Format and feed registries allow extension without modification
- Dependency Inversion: The build coordinator depends on protocols for its collaborators
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
