import unittest
from unittest.mock import AsyncMock, MagicMock

from coderag.config import Settings
from coderag.errors import IndexingInProgressError, NoRelevantContextError
from coderag.indexer import IndexingReport, RepositoryStats
from coderag.models import QueryAnswer, RepositoryDescriptor, SearchHit
from coderag_mcp import server


class TestMcpTools(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.pipeline = MagicMock()
        self.pipeline.settings = Settings(
            repositories=[RepositoryDescriptor("demo", "https://github.com/example/demo.git")]
        )
        self.pipeline.answer = AsyncMock()
        self.pipeline.index = AsyncMock()
        server.set_pipeline(self.pipeline)
        self.addCleanup(server.set_pipeline, None)

    async def test_ask_success(self):
        hits = [
            SearchHit(score=0.9, payload={"repo": "demo", "path": "a.md", "content": "A"}),
            SearchHit(score=0.4, payload={"repo": "demo", "path": "src/b.py", "content": "B"}),
        ]
        self.pipeline.answer.return_value = QueryAnswer(answer="It works.", context="ctx", hits=hits)

        result = await server._ask_repositories("How does it work?")

        self.assertTrue(result["success"])
        self.assertEqual(result["answer"], "It works.")
        self.assertEqual(result["repo"], "demo")
        self.assertEqual(result["sources"], ["demo/a.md", "demo/src/b.py"])
        self.pipeline.answer.assert_awaited_once_with("How does it work?")

    async def test_ask_failure_is_reported(self):
        self.pipeline.answer.side_effect = NoRelevantContextError("github_code")

        result = await server._ask_repositories("anything")

        self.assertFalse(result["success"])
        self.assertEqual(result["error_type"], "NoRelevantContextError")
        self.assertIn("No indexed content", result["error"])

    def test_list_repositories(self):
        result = server._list_repositories()
        self.assertEqual(result["repositories"], ["demo"])
        self.assertEqual(result["collection"], "github_code")

    async def test_index_repositories(self):
        report = IndexingReport(collection="github_code")
        report.repositories.append(RepositoryStats(name="demo", status="indexed", documents=2, chunks=3, points=3))
        self.pipeline.index.return_value = report

        result = await server._index_repositories()

        self.assertTrue(result["success"])
        self.assertEqual(result["points_upserted"], 3)
        self.assertEqual(result["repositories"][0]["name"], "demo")

    async def test_index_while_running_is_reported(self):
        self.pipeline.index.side_effect = IndexingInProgressError("An indexing run is already in progress")

        result = await server._index_repositories()

        self.assertFalse(result["success"])
        self.assertIn("already in progress", result["error"])


if __name__ == "__main__":
    unittest.main()
