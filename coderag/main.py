"""
Command-line entry point.

    coderag index              clone/pull every configured repository and rebuild the index
    coderag ask "question"     answer one question from the index
    coderag chat               interactive question loop (type 'exit' to quit)
    coderag repos              list the configured repositories

Configuration comes from the environment (see ``coderag.config``).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .config import Settings
from .errors import CodeRagError, ConfigurationError, describe_error
from .pipeline import Pipeline

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coderag",
        description="Retrieval-augmented question answering over GitHub repositories",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("index", help="Clone or update repositories and rebuild the index")

    ask_parser = subparsers.add_parser("ask", help="Answer a single question")
    ask_parser.add_argument("question", help="Question about the indexed code")
    ask_parser.add_argument(
        "--show-context",
        action="store_true",
        help="Print the retrieved context after the answer",
    )

    subparsers.add_parser("chat", help="Interactive question loop")
    subparsers.add_parser("repos", help="List configured repositories")
    return parser


async def _index(pipeline: Pipeline) -> int:
    report = await pipeline.index()
    print(json.dumps(report.as_dict(), indent=2))
    failed = [r for r in report.repositories if r.status in ("failed", "fetch_failed")]
    return 1 if failed and len(failed) == len(report.repositories) else 0


async def _ask(pipeline: Pipeline, question: str, show_context: bool) -> int:
    try:
        result = await pipeline.answer(question)
    except CodeRagError as exc:
        print(describe_error(exc), file=sys.stderr)
        return 1
    print("\nAnswer:")
    print(result.answer)
    if show_context:
        print("\nContext:")
        print(result.context)
    return 0


async def _chat(pipeline: Pipeline) -> int:
    await pipeline.initialize()
    print("\nAssistant ready! Ask your questions (type 'exit' to quit):")
    while True:
        try:
            question = (await asyncio.to_thread(input, "\nQuestion: ")).strip()
        except (EOFError, KeyboardInterrupt):
            break
        if question.lower() == "exit":
            break
        if not question:
            continue
        print("Searching...")
        try:
            result = await pipeline.answer(question)
        except CodeRagError as exc:
            print(describe_error(exc))
            continue
        print("\nAnswer:")
        print(result.answer)
    print("\nGoodbye!")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigurationError as exc:
        print(describe_error(exc), file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(f"Configuration loaded: {settings.redacted()}")

    if args.command == "repos":
        for repo in settings.repositories:
            print(f"- {repo.name}")
        return 0

    try:
        pipeline = Pipeline.from_settings(settings)
        if args.command == "index":
            return asyncio.run(_index(pipeline))
        if args.command == "ask":
            return asyncio.run(_ask(pipeline, args.question, args.show_context))
        if args.command == "chat":
            return asyncio.run(_chat(pipeline))
    except CodeRagError as exc:
        print(describe_error(exc), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
