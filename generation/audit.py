"""Audited access to the generative model."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional

from core import GenerationAttempt
from intelligence.llm import BaseLLM, LLMResponse


logger = logging.getLogger(__name__)

AttemptSink = Callable[[GenerationAttempt], Awaitable[None]]


class AuditTrail:
    """
    Wraps one job's model calls.

    Every prompt/response pair becomes a ``GenerationAttempt``, kept locally
    and handed to ``sink`` (the job store in production) before the response
    is returned to the caller.
    """

    def __init__(self, llm: BaseLLM, job_id: str, sink: Optional[AttemptSink] = None):
        self.llm = llm
        self.job_id = job_id
        self._sink = sink
        self.attempts: List[GenerationAttempt] = []

    async def generate(
        self,
        stage: str,
        prompt: str,
        *,
        max_tokens: int,
        temperature: float,
        assignment_index: Optional[int] = None,
    ) -> LLMResponse:
        response = await self.llm.agenerate(prompt, max_tokens=max_tokens, temperature=temperature)
        attempt = GenerationAttempt(
            job_id=self.job_id,
            stage=stage,
            assignment_index=assignment_index,
            prompt=prompt,
            output=response.content,
            signal=response.signal,
            usage=dict(response.usage or {}),
        )
        self.attempts.append(attempt)
        logger.debug(
            "llm_call job_id=%s stage=%s assignment=%s signal=%s chars=%s",
            self.job_id,
            stage,
            assignment_index,
            attempt.signal.value,
            len(response.content),
        )
        if self._sink is not None:
            await self._sink(attempt)
        return response

    def calls(self, stage: Optional[str] = None) -> List[GenerationAttempt]:
        if stage is None:
            return list(self.attempts)
        return [attempt for attempt in self.attempts if attempt.stage == stage]
