"""Pull request documentation previews: build untrusted, publish trusted."""

__version__ = "0.1.0"
