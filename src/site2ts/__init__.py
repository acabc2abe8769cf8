"""Control plane for the site2ts crawl-to-codebase pipeline."""

__version__ = "0.1.0"
