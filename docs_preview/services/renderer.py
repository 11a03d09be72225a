"""
Documentation renderer.

Rendering is delegated to the static-site generator. ``MkDocsRenderer`` runs
the configured command with ``--site-dir`` pointing at a scratch directory.
"""

import asyncio
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from docs_preview.exceptions import DocsPreviewError
from docs_preview.utils.logging import get_logger

logger = get_logger(__name__)

# Lines of generator output kept in the error message
_OUTPUT_TAIL_LINES = 20


class RenderError(DocsPreviewError):
    """Raised when the documentation cannot be rendered."""
    pass


class Renderer(Protocol):
    """Renders the documentation sources into ``output_dir``."""

    async def render(self, output_dir: Path) -> None:
        ...


class MkDocsRenderer:
    """
    Renders documentation with MkDocs.

    Runs without ``--strict`` by default so that mildly broken docs still get
    a preview.
    """

    def __init__(
        self,
        command: Sequence[str] = ("uv", "run", "mkdocs", "build"),
        source_dir: Optional[Path] = None,
        timeout_seconds: int = 900
    ):
        self.command: List[str] = list(command)
        self.source_dir = Path(source_dir) if source_dir else Path.cwd()
        self.timeout_seconds = timeout_seconds

    async def render(self, output_dir: Path) -> None:
        args = self.command + ["--site-dir", str(Path(output_dir).resolve())]
        logger.info(f"Rendering docs: {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(self.source_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT
            )
        except OSError as e:
            raise RenderError(f"Could not start renderer {args[0]!r}: {e}") from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), self.timeout_seconds)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise RenderError(f"Renderer timed out after {self.timeout_seconds}s") from e

        output = stdout.decode("utf-8", errors="replace")

        if process.returncode != 0:
            tail = "\n".join(output.splitlines()[-_OUTPUT_TAIL_LINES:])
            raise RenderError(f"Renderer exited with status {process.returncode}:\n{tail}")

        logger.info("Docs rendered successfully")
