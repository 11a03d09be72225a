"""Base exception for the docs preview deployer."""


class DocsPreviewError(Exception):
    """Root of every error raised by docs_preview services."""
    pass
