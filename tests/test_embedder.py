import math
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import requests
import torch

from coderag.config import EmbeddingConfig
from coderag.embedder import TransformersEmbedder, build_embedder, mean_pool
from coderag.errors import ConfigurationError, EmbeddingError, EmbeddingNotInitializedError
from coderag.ollama_embedder import OllamaEmbedder


class _TensorTokenizer:
    model_max_length = 16

    def __init__(self):
        self.max_lengths = []

    def __call__(self, texts, padding=True, truncation=True, max_length=None, return_tensors="pt"):
        self.max_lengths.append(max_length)
        ids = [max(1, len(word)) for word in texts[0].split()][:max_length] or [1]
        return {
            "input_ids": torch.tensor([ids]),
            "attention_mask": torch.ones(1, len(ids), dtype=torch.long),
        }


class _EncoderModel:
    config = SimpleNamespace(hidden_size=4)

    def to(self, device):
        return self

    def eval(self):
        return self

    def __call__(self, input_ids, attention_mask):
        weights = torch.tensor([1.0, 2.0, 0.5, -1.0])
        hidden = input_ids.float().unsqueeze(-1) * weights + 1.0
        return SimpleNamespace(last_hidden_state=hidden)


class TestMeanPool(unittest.TestCase):
    def test_padding_positions_are_ignored(self):
        hidden = torch.tensor([[[1.0, 1.0], [3.0, 5.0], [100.0, 100.0]]])
        mask = torch.tensor([[1, 1, 0]])
        pooled = mean_pool(hidden, mask)
        self.assertTrue(torch.allclose(pooled, torch.tensor([[2.0, 3.0]])))


class TestTransformersEmbedder(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tokenizer = _TensorTokenizer()
        self.tokenizer_patch = patch(
            "coderag.embedder.AutoTokenizer.from_pretrained", return_value=self.tokenizer
        )
        self.model_patch = patch("coderag.embedder.AutoModel.from_pretrained", return_value=_EncoderModel())
        self.tokenizer_patch.start()
        self.model_patch.start()
        self.addCleanup(self.tokenizer_patch.stop)
        self.addCleanup(self.model_patch.stop)
        self.embedder = TransformersEmbedder(model_name="test/encoder", device="cpu")

    async def test_embed_before_initialize_fails(self):
        with self.assertRaises(EmbeddingNotInitializedError) as ctx:
            await self.embedder.embed("hello")
        self.assertIsInstance(ctx.exception, RuntimeError)
        self.assertFalse(self.embedder.is_ready())

    async def test_vectors_are_unit_length_and_fixed_size(self):
        await self.embedder.initialize()
        self.assertTrue(self.embedder.is_ready())
        self.assertEqual(self.embedder.dimension, 4)

        for text in ("def main(): pass", "a", "a much longer sentence with several words in it"):
            vector = await self.embedder.embed(text)
            self.assertEqual(len(vector), 4)
            self.assertAlmostEqual(math.sqrt(sum(x * x for x in vector)), 1.0, places=5)

    async def test_deterministic(self):
        await self.embedder.initialize()
        first = await self.embedder.embed("same input text")
        second = await self.embedder.embed("same input text")
        self.assertEqual(first, second)

    async def test_load_failure_is_wrapped(self):
        embedder = TransformersEmbedder(model_name="missing/model", device="cpu")
        with patch("coderag.embedder.AutoModel.from_pretrained", side_effect=OSError("no such model")):
            with self.assertRaises(EmbeddingError):
                await embedder.initialize()
        self.assertFalse(embedder.is_ready())

    async def test_inference_failure_is_wrapped(self):
        await self.embedder.initialize()
        self.embedder._model = MagicMock(side_effect=RuntimeError("CUDA out of memory"))
        self.embedder._model.config.hidden_size = 4
        with self.assertRaises(EmbeddingError):
            await self.embedder.embed("text")

    async def test_chunk_length_is_capped_at_model_limit(self):
        embedder = TransformersEmbedder(model_name="test/encoder", device="cpu", max_length=1000)

        with self.assertLogs("coderag.embedder", level="WARNING") as logs:
            await embedder.initialize()
        await embedder.embed(" ".join(["word"] * 40))

        self.assertEqual(self.tokenizer.max_lengths, [16])
        self.assertTrue(any("16-token input limit" in line for line in logs.output))

    async def test_chunk_length_within_model_limit_is_used(self):
        embedder = TransformersEmbedder(model_name="test/encoder", device="cpu", max_length=8)
        await embedder.initialize()
        await embedder.embed("short text")
        self.assertEqual(self.tokenizer.max_lengths, [8])


class TestOllamaEmbedder(unittest.IsolatedAsyncioTestCase):
    def _session(self, embeddings):
        response = MagicMock()
        response.json.return_value = {"embeddings": embeddings}
        session = MagicMock()
        session.post.return_value = response
        return session

    async def test_vectors_are_normalized(self):
        session = self._session([[3.0, 4.0]])
        embedder = OllamaEmbedder(model="embed", dims=2, url="http://ollama/api/embed", session=session)

        await embedder.initialize()
        vector = await embedder.embed("hello")

        self.assertAlmostEqual(vector[0], 0.6)
        self.assertAlmostEqual(vector[1], 0.8)
        body = session.post.call_args.kwargs["json"]
        self.assertEqual(body["input"], ["hello"])
        self.assertEqual(body["dimensions"], 2)

    async def test_dimension_mismatch(self):
        embedder = OllamaEmbedder(model="embed", dims=4, session=self._session([[3.0, 4.0]]))
        with self.assertRaises(EmbeddingError):
            await embedder.initialize()
        self.assertFalse(embedder.is_ready())

    async def test_request_error(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        embedder = OllamaEmbedder(model="embed", dims=2, session=session)
        with self.assertRaises(EmbeddingError):
            await embedder.initialize()

    async def test_non_json_body(self):
        response = MagicMock()
        response.json.side_effect = ValueError("Expecting value: line 1 column 1")
        session = MagicMock()
        session.post.return_value = response
        embedder = OllamaEmbedder(model="embed", dims=2, session=session)

        with self.assertRaises(EmbeddingError):
            await embedder.initialize()

    async def test_embed_before_initialize(self):
        embedder = OllamaEmbedder(model="embed", dims=2, session=self._session([[1.0, 0.0]]))
        with self.assertRaises(EmbeddingNotInitializedError):
            await embedder.embed("x")


class TestBuildEmbedder(unittest.TestCase):
    def test_providers(self):
        self.assertIsInstance(build_embedder(EmbeddingConfig(provider="transformers")), TransformersEmbedder)
        self.assertIsInstance(build_embedder(EmbeddingConfig(provider="Ollama")), OllamaEmbedder)

    def test_unknown_provider(self):
        with self.assertRaises(ConfigurationError):
            build_embedder(EmbeddingConfig(provider="openai"))


if __name__ == "__main__":
    unittest.main()
