"""DocGraph command line interface."""

from docgraph import __version__

__all__ = ["__version__"]
