# ABOUTME: Narrative service clients: the NarrativeClient interface and an OpenAI-compatible implementation.
# ABOUTME: OpenAINarrativeClient builds prompts, calls chat completions with retry and wraps failures in NarrativeServiceError.

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger
from openai import AsyncOpenAI

from storyteller.config.prompts import build_prompt
from storyteller.config.settings import Settings
from storyteller.models.narrative import NarrativeRequest
from storyteller.narrative.exceptions import NarrativeServiceError
from storyteller.narrative.llm_retry import llm_retry


class NarrativeClient(ABC):
    """Text-generation service that writes one round per request"""

    @abstractmethod
    async def generate(self, request: NarrativeRequest) -> str:
        """
        Generate raw output for the requested round.

        The returned text is untrusted and must go through
        parse_narrative_response before use.

        Raises:
            NarrativeServiceError: When the service cannot be reached
        """


class OpenAINarrativeClient(NarrativeClient):
    """
    Narrative client for OpenAI-compatible chat completion endpoints.

    Transient API errors are retried with exponential backoff; anything that
    still fails is raised as NarrativeServiceError.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o",
        temperature: float = 1.0,
        max_tokens: int = 4000,
        retry_attempts: int = 3,
        request_timeout: float = 30.0,
        history_window: int = 3,
        goal_selection_round: int = 3,
        json_mode: bool = True
    ):
        """
        Initialize narrative client.

        Args:
            client: AsyncOpenAI client instance
            model: Chat model name
            temperature: Sampling temperature
            max_tokens: Completion token limit
            retry_attempts: Attempts for transient API errors
            request_timeout: Per-request timeout in seconds
            history_window: Recent rounds included in prompts
            goal_selection_round: Goal-selection round, for prompt numbering
            json_mode: Request a JSON object response format
        """
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.retry_attempts = retry_attempts
        self.request_timeout = request_timeout
        self.history_window = history_window
        self.goal_selection_round = goal_selection_round
        self.json_mode = json_mode

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAINarrativeClient":
        """Build a client and its AsyncOpenAI transport from settings"""
        transport = AsyncOpenAI(
            api_key=settings.narrative_api_key,
            base_url=settings.narrative_base_url,
        )
        return cls(
            client=transport,
            model=settings.narrative_model,
            temperature=settings.narrative_temperature,
            max_tokens=settings.narrative_max_tokens,
            retry_attempts=settings.narrative_retry_attempts,
            request_timeout=settings.narrative_timeout_seconds,
            history_window=settings.history_window,
            goal_selection_round=settings.goal_selection_round,
        )

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": self.request_timeout,
        }
        if self.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**kwargs)
        return response.choices[0].message.content or ""

    async def generate(self, request: NarrativeRequest) -> str:
        """
        Generate raw narrative output for a request.

        Args:
            request: Narrative request for the round being generated

        Returns:
            Raw completion text (possibly empty or malformed)

        Raises:
            NarrativeServiceError: When all retry attempts fail
        """
        system_prompt, user_prompt = build_prompt(
            request,
            history_window=self.history_window,
            goal_selection_round=self.goal_selection_round,
        )

        logger.bind(
            model=self.model,
            phase=request.phase.value,
            round=request.round_number,
        ).debug("Requesting narrative generation")

        complete = llm_retry(attempts=self.retry_attempts)(self._complete)
        try:
            return await complete(system_prompt, user_prompt)
        except Exception as e:
            raise NarrativeServiceError(f"Narrative API call failed: {e}") from e
