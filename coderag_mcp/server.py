"""Code RAG MCP Server - answers questions about indexed GitHub repositories."""

import logging
from typing import Any, Dict, Optional

from fastmcp import FastMCP

from coderag.config import Settings
from coderag.errors import CodeRagError, describe_error
from coderag.pipeline import Pipeline

logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("code-rag")

# Pipeline shared by all tool calls, built on first use
_pipeline: Optional[Pipeline] = None


def _get_pipeline() -> Pipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = Pipeline.from_settings(Settings.from_env())
    return _pipeline


def set_pipeline(pipeline: Optional[Pipeline]) -> None:
    """Replace the shared pipeline (used by tests and embedding applications)."""
    global _pipeline
    _pipeline = pipeline


async def _ask_repositories(question: str) -> Dict[str, Any]:
    """Internal implementation of ask_repositories."""
    try:
        pipeline = _get_pipeline()
        result = await pipeline.answer(question)
    except CodeRagError as e:
        logger.warning(f"Question failed: {e}")
        return {"success": False, "error": describe_error(e), "error_type": type(e).__name__}

    top = result.hits[0].payload if result.hits else {}
    return {
        "success": True,
        "answer": result.answer,
        "context": result.context,
        "repo": top.get("repo"),
        "sources": [f"{hit.payload.get('repo')}/{hit.payload.get('path')}" for hit in result.hits],
    }


def _list_repositories() -> Dict[str, Any]:
    """Internal implementation of list_repositories."""
    try:
        pipeline = _get_pipeline()
    except CodeRagError as e:
        return {"success": False, "error": describe_error(e)}
    return {
        "success": True,
        "repositories": [repo.name for repo in pipeline.settings.repositories],
        "collection": pipeline.settings.store.collection_name,
    }


async def _index_repositories() -> Dict[str, Any]:
    """Internal implementation of index_repositories."""
    try:
        pipeline = _get_pipeline()
        report = await pipeline.index()
    except CodeRagError as e:
        logger.error(f"Indexing failed: {e}")
        return {"success": False, "error": describe_error(e)}
    return {"success": True, **report.as_dict()}


@mcp.tool()
async def ask_repositories(question: str) -> Dict[str, Any]:
    """
    Answer a question about the indexed repositories.

    Args:
        question: Natural-language question about the code

    Returns:
        The answer, the retrieved context and the source files used
    """
    return await _ask_repositories(question)


@mcp.tool()
def list_repositories() -> Dict[str, Any]:
    """
    List the repositories configured for indexing.

    Returns:
        Repository names and the target collection
    """
    return _list_repositories()


@mcp.tool()
async def index_repositories() -> Dict[str, Any]:
    """
    Clone or update every configured repository and rebuild the index.

    The collection is reset first, so this replaces any previous index.

    Returns:
        Per-repository indexing statistics
    """
    return await _index_repositories()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    mcp.run()


if __name__ == "__main__":
    # Run the MCP server
    main()
