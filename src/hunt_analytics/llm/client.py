"""
LLM client abstraction supporting multiple providers.

Supports:
- OpenAI (GPT-4o-mini and friends)
- Azure OpenAI deployments
- Ollama (local models)
- OpenRouter (OpenAI-compatible)

The engine only ever asks a model to phrase questions, so every client
exposes ``complete`` for text and ``complete_json`` for a JSON object;
``extract_structured`` adds a JSON schema to the prompt. Transport failures
surface as ``ExternalServiceError``; a reply that is not JSON surfaces as
``ValueError`` so callers can fall back to template wording instead of
retrying.
"""

import os
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Literal

import httpx

from hunt_analytics.exceptions import ConfigurationError, ExternalServiceError

logger = logging.getLogger(__name__)

Provider = Literal["openai", "azure", "ollama", "openrouter"]

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "azure": "gpt-4o-mini",
    "ollama": "llama3.2",
    "openrouter": "openai/gpt-4o-mini",
}


@dataclass
class LLMConfig:
    """Configuration for LLM client."""

    provider: Provider = "openai"
    model: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    api_version: str = "2024-06-01"
    temperature: float = 0.3
    max_tokens: int = 1024
    timeout: float = 60.0

    def __post_init__(self):
        if self.model is None:
            self.model = DEFAULT_MODELS.get(self.provider, "gpt-4o-mini")

        # Auto-detect API keys from environment
        if self.api_key is None:
            if self.provider == "openai":
                self.api_key = os.getenv("OPENAI_API_KEY")
            elif self.provider == "azure":
                self.api_key = os.getenv("AZURE_OPENAI_API_KEY")
            elif self.provider == "openrouter":
                self.api_key = os.getenv("OPENROUTER_API_KEY")

        # Set default base URLs
        if self.base_url is None:
            if self.provider == "ollama":
                self.base_url = os.getenv("OLLAMA_HOST", "http://localhost:11434")
            elif self.provider == "azure":
                self.base_url = os.getenv("AZURE_OPENAI_ENDPOINT")
            elif self.provider == "openrouter":
                self.base_url = "https://openrouter.ai/api/v1"


def parse_json_reply(content: str) -> dict:
    """Pull the outermost JSON object out of a model reply.

    Raises:
        ValueError: if no JSON object can be decoded.
    """
    content = (content or "").strip()
    # Strip markdown code fences if present
    if content.startswith("```"):
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[4:]
    if "{" in content:
        start = content.index("{")
        end = content.rindex("}") + 1
        content = content[start:end]
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    def __init__(self, config: LLMConfig):
        self.config = config

    @abstractmethod
    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        """Generate a completion for the given prompt."""
        pass

    def complete_json(self, prompt: str, system: Optional[str] = None) -> dict:
        """Generate a JSON object for the given prompt."""
        content = self.complete(f"{prompt}\n\nRespond with valid JSON only.", system)
        return parse_json_reply(content)

    def extract_structured(
        self,
        prompt: str,
        schema: dict,
        system: Optional[str] = None
    ) -> dict:
        """Extract structured data matching a JSON schema."""
        schema_str = json.dumps(schema, indent=2)
        full_prompt = f"""{prompt}

Respond with valid JSON matching this schema:
```json
{schema_str}
```

JSON response:"""
        return self.complete_json(full_prompt, system)


class OpenAIClient(LLMClient):
    """OpenAI-compatible API client (OpenAI, Azure OpenAI, OpenRouter)."""

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        try:
            import openai
        except ImportError:
            raise ImportError("openai package required: pip install hunt-analytics[llm]")

        self._errors = (openai.APIError,)
        if config.provider == "azure":
            if not config.base_url:
                raise ConfigurationError("Azure OpenAI needs AZURE_OPENAI_ENDPOINT or base_url")
            self._client = openai.AzureOpenAI(
                api_key=config.api_key,
                azure_endpoint=config.base_url,
                api_version=config.api_version,
                timeout=config.timeout,
            )
        else:
            self._client = openai.OpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout,
            )

    def _create(self, prompt: str, system: Optional[str], **extra: Any) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = self._client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                **extra,
            )
        except self._errors as e:
            raise ExternalServiceError(
                f"{self.config.provider} completion failed: {e}",
                detail={"provider": self.config.provider, "model": self.config.model},
            ) from e
        return response.choices[0].message.content or ""

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        return self._create(prompt, system)

    def complete_json(self, prompt: str, system: Optional[str] = None) -> dict:
        content = self._create(prompt, system, response_format={"type": "json_object"})
        return parse_json_reply(content)


class OllamaClient(LLMClient):
    """Ollama local LLM client."""

    def __init__(self, config: LLMConfig, http: Optional[httpx.Client] = None):
        super().__init__(config)
        self._http = http or httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def _generate(self, prompt: str, system: Optional[str], json_mode: bool) -> str:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.config.temperature,
                "num_predict": self.config.max_tokens,
            },
        }
        if system:
            payload["system"] = system
        if json_mode:
            payload["format"] = "json"

        try:
            response = self._http.post("/api/generate", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                f"Ollama request failed: {e}",
                detail={"provider": "ollama", "model": self.config.model},
            ) from e
        return response.json().get("response", "")

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        return self._generate(prompt, system, json_mode=False)

    def complete_json(self, prompt: str, system: Optional[str] = None) -> dict:
        content = self._generate(f"{prompt}\n\nRespond with valid JSON only.", system, json_mode=True)
        return parse_json_reply(content)

    def is_available(self) -> bool:
        """Whether the Ollama server answers at all."""
        try:
            return self._http.get("/api/tags").status_code == 200
        except httpx.HTTPError:
            return False


def get_llm_client(config: Optional[LLMConfig] = None) -> LLMClient:
    """Get an LLM client based on configuration."""
    if config is None:
        # Auto-detect based on available API keys
        if os.getenv("OPENAI_API_KEY"):
            config = LLMConfig(provider="openai")
        elif os.getenv("AZURE_OPENAI_API_KEY"):
            config = LLMConfig(provider="azure")
        elif os.getenv("OPENROUTER_API_KEY"):
            config = LLMConfig(provider="openrouter")
        else:
            # Default to Ollama for local
            config = LLMConfig(provider="ollama")

    clients = {
        "openai": OpenAIClient,
        "azure": OpenAIClient,
        "ollama": OllamaClient,
        "openrouter": OpenAIClient,  # OpenRouter uses OpenAI-compatible API
    }

    client_class = clients.get(config.provider)
    if client_class is None:
        raise ConfigurationError(f"Unknown LLM provider: {config.provider}")

    logger.debug(f"Using {config.provider} LLM client with model {config.model}")
    return client_class(config)
