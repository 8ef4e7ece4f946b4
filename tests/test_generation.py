import json
import unittest

import httpx

from coderag.config import GenerationConfig
from coderag.errors import (
    ConfigurationError,
    GenerationAuthError,
    GenerationError,
    ModelUnavailableError,
)
from coderag.generation import GenerationClient, build_prompt, extract_answer


def _config(**overrides):
    options = dict(model="org/model", base_url="https://inference.test/models/", token="hf_secret")
    options.update(overrides)
    return GenerationConfig(**options)


class TestPrompt(unittest.TestCase):
    def test_sections(self):
        prompt = build_prompt("How does it work?", "demo/a.md\n\nA\n---", "- demo")

        self.assertIn("<instructions>", prompt)
        self.assertIn("- demo", prompt)
        self.assertIn("<context>\ndemo/a.md\n\nA\n---\n</context>", prompt)
        self.assertIn("<question>\nHow does it work?\n</question>", prompt)
        self.assertTrue(prompt.rstrip().endswith("<answer>"))

    def test_extract_answer(self):
        self.assertEqual(extract_answer("  plain answer \n"), "plain answer")
        self.assertEqual(extract_answer("prompt...<answer>\nreal one</answer>"), "real one")


class TestGenerationClient(unittest.IsolatedAsyncioTestCase):
    def _client(self, handler, **overrides):
        self.requests = []

        def record(request):
            self.requests.append(request)
            return handler(request)

        return GenerationClient(_config(**overrides), transport=httpx.MockTransport(record))

    async def test_success(self):
        client = self._client(lambda r: httpx.Response(200, json=[{"generated_text": "  The answer.\n"}]))

        answer = await client.generate_answer("q?", "ctx", "- demo")

        self.assertEqual(answer, "The answer.")
        request = self.requests[0]
        self.assertEqual(str(request.url), "https://inference.test/models/org/model")
        self.assertEqual(request.headers["Authorization"], "Bearer hf_secret")
        body = json.loads(request.content)
        self.assertEqual(body["parameters"]["max_new_tokens"], 1024)
        self.assertEqual(body["parameters"]["temperature"], 0.1)
        self.assertEqual(body["parameters"]["top_p"], 0.95)
        self.assertTrue(body["parameters"]["do_sample"])
        self.assertIn("<question>\nq?\n</question>", body["inputs"])

    async def test_echoed_prompt_is_stripped(self):
        def handler(request):
            prompt = json.loads(request.content)["inputs"]
            return httpx.Response(200, json={"generated_text": prompt + "Echoed answer"})

        answer = await self._client(handler).generate("<question>x</question>\n<answer>\n")
        self.assertEqual(answer, "Echoed answer")

    async def test_unauthorized(self):
        client = self._client(lambda r: httpx.Response(401, json={"error": "Invalid credentials"}))
        with self.assertRaises(GenerationAuthError) as ctx:
            await client.generate("prompt")
        self.assertNotIn("hf_secret", str(ctx.exception))

    async def test_model_unavailable(self):
        for status in (403, 404, 503):
            client = self._client(lambda r, s=status: httpx.Response(s, json={"error": "Model is loading"}))
            with self.assertRaises(ModelUnavailableError):
                await client.generate("prompt")

    async def test_other_http_error(self):
        client = self._client(lambda r: httpx.Response(500, text="boom"))
        with self.assertRaises(GenerationError) as ctx:
            await client.generate("prompt")
        self.assertNotIsInstance(ctx.exception, ModelUnavailableError)

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with self.assertRaises(GenerationError):
            await self._client(handler).generate("prompt")

    async def test_malformed_response(self):
        client = self._client(lambda r: httpx.Response(200, json={"unexpected": True}))
        with self.assertRaises(GenerationError):
            await client.generate("prompt")

    def test_missing_token(self):
        with self.assertRaises(ConfigurationError):
            GenerationClient(_config(token=None))

    def test_token_not_in_repr(self):
        self.assertNotIn("hf_secret", repr(_config()))


if __name__ == "__main__":
    unittest.main()
