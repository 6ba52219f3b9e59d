"""
Streaming text generation with retry.

The client is handed an ordered list of role-tagged messages
(``{"role": "system" | "user", "content": ...}``), streams the backend's
response chunk by chunk, echoes it to stdout so long generations can be
watched, and returns the concatenated text. Backends are small objects with a
``stream(messages)`` generator, which keeps the pipeline independent of the
vendor SDK and lets tests inject scripted responses.
"""

import sys
import time
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import anthropic
import google.generativeai as genai
from google.generativeai import GenerativeModel

import book_config as config

Message = Dict[str, str]


class GenerationFailure(RuntimeError):
    """Raised when the backend keeps failing after every retry."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


class EmptyResponseError(RuntimeError):
    """Raised when a backend finishes a stream without producing any text."""


def build_messages(system: str, user: str) -> List[Message]:
    """Return the two-message request every pipeline stage sends."""
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def split_system(messages: List[Message]) -> Tuple[str, List[Message]]:
    """Separate system instructions from the conversational messages."""
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    conversation = [
        {"role": m["role"], "content": m["content"]}
        for m in messages
        if m["role"] != "system"
    ]
    return "\n\n".join(system_parts), conversation


class AnthropicBackend:
    """Streams completions from Claude."""

    def __init__(
        self,
        model: str = config.ANTHROPIC_MODEL,
        temperature: Optional[float] = config.TEMPERATURE,
        top_p: Optional[float] = config.ANTHROPIC_TOP_P,
        max_tokens: int = config.MAX_OUTPUT_TOKENS,
        client: Optional[anthropic.Anthropic] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.top_p = top_p
        self.max_tokens = max_tokens
        self.client = client or anthropic.Anthropic()

    def stream(self, messages: List[Message]) -> Iterator[str]:
        system, conversation = split_system(messages)
        kwargs = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": conversation,
        }
        if system:
            kwargs["system"] = system
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        if self.top_p is not None:
            kwargs["top_p"] = self.top_p

        with self.client.messages.stream(**kwargs) as stream:
            for text in stream.text_stream:
                yield text


class GeminiBackend:
    """Streams completions from Gemini."""

    def __init__(
        self,
        model: str = config.GEMINI_MODEL,
        temperature: float = config.TEMPERATURE,
        top_p: float = config.TOP_P,
        max_tokens: int = config.MAX_OUTPUT_TOKENS,
        api_key: str = config.GEMINI_API_KEY,
    ):
        self.model = model
        self.temperature = temperature
        self.top_p = top_p
        self.max_tokens = max_tokens
        if api_key:
            genai.configure(api_key=api_key)

    def stream(self, messages: List[Message]) -> Iterator[str]:
        system, conversation = split_system(messages)
        model = GenerativeModel(
            model_name=self.model,
            system_instruction=system or None,
            generation_config={
                "temperature": self.temperature,
                "top_p": self.top_p,
                "max_output_tokens": self.max_tokens,
            },
        )
        prompt = "\n\n".join(m["content"] for m in conversation)
        for chunk in model.generate_content(prompt, stream=True):
            # Chunks without candidate parts (e.g. the final usage chunk) carry no text
            try:
                text = chunk.text
            except ValueError:
                continue
            yield text


def create_backend(name: str = config.BACKEND):
    """Build the backend named in the configuration."""
    if name == "anthropic":
        return AnthropicBackend()
    if name == "gemini":
        return GeminiBackend()
    raise ValueError(f"Unknown generation backend '{name}' (expected 'anthropic' or 'gemini')")


class GenerationClient:
    """Calls a backend with a fixed-delay retry loop."""

    def __init__(
        self,
        backend,
        max_retries: int = config.MAX_RETRIES,
        retry_delay: float = config.RETRY_DELAY,
        echo: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.echo = echo
        self._sleep = sleep

    def complete(
        self,
        messages: List[Message],
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> str:
        """Return the full streamed response, retrying on any backend error."""
        max_retries = self.max_retries if max_retries is None else max_retries
        retry_delay = self.retry_delay if retry_delay is None else retry_delay
        attempts = 0
        last_error: Optional[BaseException] = None

        while attempts < max_retries:
            try:
                return self._stream_once(messages)
            except Exception as e:
                attempts += 1
                last_error = e
                print(f"\nAPI call failed (attempt {attempts}/{max_retries}): {e}", file=sys.stderr, flush=True)
                if attempts >= max_retries:
                    break
                print(f"Retrying in {retry_delay:g} seconds...", flush=True)
                self._sleep(retry_delay)

        raise GenerationFailure(f"Failed after {max_retries} attempts: {last_error}", last_error)

    def _stream_once(self, messages: List[Message]) -> str:
        chunks = []
        if self.echo:
            print(flush=True)
        for text in self.backend.stream(messages):
            chunks.append(text)
            if self.echo:
                print(text, end="", flush=True)
        if self.echo:
            print("\n", flush=True)

        response = "".join(chunks)
        if not response.strip():
            raise EmptyResponseError("Backend returned an empty response")
        return response
