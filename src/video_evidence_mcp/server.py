"""Main FastMCP server — mounts the evidence tools."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from .client import GeminiClient
from .sessions import close_workspace_store
from .tools.evidence import evidence_server

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(server: FastMCP):
    """Close the database and shared Gemini clients on shutdown."""
    yield {}
    close_workspace_store()
    closed = await GeminiClient.close_all()
    logger.info("Lifespan shutdown: closed %d client(s)", closed)


app = FastMCP(
    "video-evidence",
    instructions=(
        "Video evidence analysis — attach a video, ask questions, get time-ranged "
        "findings, bookmark them and compile a narrative report."
    ),
    lifespan=_lifespan,
)

app.mount(evidence_server)


def main() -> None:
    """Entry-point for ``video-evidence-mcp`` console script."""
    app.run()


if __name__ == "__main__":
    main()
