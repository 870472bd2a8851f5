"""Mock generator for development and testing.

Returns scripted responses without calling a real backend.
"""

import asyncio
from collections import deque
from typing import Callable, Iterable, Optional, Union

from relstats.core.config import ExtractionSettings
from relstats.models.schemas import GenerationMeta, GenerationResult
from relstats.services.base import BaseGenerator


ScriptItem = Union[str, GenerationResult, BaseException, Callable[[str], str]]


class MockGenerator(BaseGenerator):
    """Scripted implementation of the generation transport.

    Each call consumes the next script item. A string is returned as the
    response text, a GenerationResult is returned as-is, an exception is
    raised and a callable is invoked with the prompt to produce the text.
    Once the script is exhausted every call gets ``default``.
    """

    def __init__(
        self,
        responses: Optional[Iterable[ScriptItem]] = None,
        default: ScriptItem = '{"characters": []}',
        delay_seconds: float = 0.0,
        profile_id: str = "mock",
    ):
        self._script: deque[ScriptItem] = deque(responses or [])
        self._default = default
        self._delay_seconds = delay_seconds
        self._profile_id = profile_id
        self.prompts: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt: str, settings: ExtractionSettings) -> GenerationResult:
        """Return the next scripted response.

        Args:
            prompt: Prompt text (recorded in ``prompts``).
            settings: Run settings (unused).

        Returns:
            GenerationResult with mock metadata.
        """
        self.prompts.append(prompt)
        item = self._script.popleft() if self._script else self._default

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._delay_seconds:
                await asyncio.sleep(self._delay_seconds)
            else:
                await asyncio.sleep(0)
        finally:
            self.in_flight -= 1

        if isinstance(item, BaseException):
            raise item
        if isinstance(item, GenerationResult):
            return item
        text = item(prompt) if callable(item) else item
        return GenerationResult(
            text=text,
            meta=GenerationMeta(
                profile_id=self._profile_id,
                prompt_chars=len(prompt),
                output_chars=len(text),
                max_tokens=settings.max_tokens_override or None,
            ),
        )
