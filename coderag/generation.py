"""Text-generation client for answering questions over retrieved code context."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .config import GenerationConfig
from .errors import ConfigurationError, GenerationAuthError, GenerationError, ModelUnavailableError

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """<instructions>
You are an expert programming assistant with in-depth knowledge of the following GitHub repositories:
{repo_list}

Answer the question using only the provided context and your general understanding of the code.
If the information is not in the context, say so clearly.
Always cite the relevant source files in your answer.
</instructions>

<context>
{context}
</context>

<question>
{question}
</question>

<answer>
"""

ANSWER_TAG = "<answer>"


def build_prompt(question: str, context: str, repo_list: str) -> str:
    return PROMPT_TEMPLATE.format(repo_list=repo_list, context=context, question=question)


def extract_answer(generated_text: str) -> str:
    """Return the text after the last ``<answer>`` tag, trimmed.

    Services that echo the prompt back include the tag; others return the
    continuation only.
    """
    if ANSWER_TAG in generated_text:
        generated_text = generated_text.rsplit(ANSWER_TAG, 1)[1]
    return generated_text.replace("</answer>", "").strip()


def _join_url(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + "/" + path.lstrip("/")


class GenerationClient:
    """Calls the Hugging Face text-generation inference API."""

    def __init__(self, config: GenerationConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        if not config.token:
            raise ConfigurationError("HF_TOKEN is missing")
        self.config = config
        self._transport = transport

    async def generate(self, prompt: str) -> str:
        config = self.config
        url = _join_url(config.base_url, config.model)
        headers = {
            "Authorization": f"Bearer {config.token}",
            "Content-Type": "application/json",
        }
        body: Dict[str, Any] = {
            "inputs": prompt,
            "parameters": {
                "max_new_tokens": config.max_new_tokens,
                "temperature": config.temperature,
                "top_p": config.top_p,
                "do_sample": True,
                "return_full_text": False,
            },
        }

        try:
            async with httpx.AsyncClient(timeout=config.timeout_s, transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            raise GenerationError(f"Generation request to {config.model} failed: {exc}") from exc

        if response.status_code == 401:
            raise GenerationAuthError("Invalid Hugging Face token. Please check your configuration.")
        if response.status_code in (403, 404, 503):
            raise ModelUnavailableError(
                f"Model {config.model} is not available (HTTP {response.status_code}): {_error_detail(response)}"
            )
        if response.status_code >= 400:
            raise GenerationError(f"HTTP error {response.status_code}: {_error_detail(response)}")

        return extract_answer(_generated_text(response.json()))

    async def generate_answer(self, question: str, context: str, repo_list: str) -> str:
        return await self.generate(build_prompt(question, context, repo_list))


def _generated_text(data: Any) -> str:
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict) and isinstance(data.get("generated_text"), str):
        return data["generated_text"]
    raise GenerationError("Generation response missing 'generated_text'")


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict) and "error" in data:
        return str(data["error"])[:200]
    return str(data)[:200]
