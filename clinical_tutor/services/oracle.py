"""OpenAI feedback oracle: scores one student answer for one case stage."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from clinical_tutor.config import settings
from clinical_tutor.models import ClinicalCase, OracleFeedback
from clinical_tutor.prompts import EVALUATOR, STAGE_ANSWER, format_stage_history

log = logging.getLogger(__name__)

CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


class OracleError(Exception):
    """The oracle could not score the answer. Safe to retry the same stage."""


class OracleUnavailableError(OracleError):
    pass


class OracleTimeoutError(OracleError):
    pass


class OracleResponseError(OracleError):
    """The oracle answered, but not with the expected JSON object."""


@dataclass
class OracleStatus:
    available: bool
    message: str
    detail: Optional[str] = None


def strip_code_fence(raw_text: str) -> str:
    """Return the fenced block's body if the text is wrapped in ``` fences."""
    match = CODE_FENCE.search(raw_text)
    if match:
        return match.group(1)
    return raw_text.strip()


def parse_feedback(raw_text: Optional[str]) -> OracleFeedback:
    if not raw_text or not raw_text.strip():
        raise OracleResponseError("empty response from the oracle")
    try:
        data = json.loads(strip_code_fence(raw_text))
    except json.JSONDecodeError as e:
        raise OracleResponseError(f"oracle response is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise OracleResponseError("oracle response is not a JSON object")
    try:
        return OracleFeedback(**data)
    except ValidationError as e:
        raise OracleResponseError(f"oracle response has the wrong shape: {e}") from e


def build_messages(
    case: ClinicalCase, stage_index: int, student_response: str
) -> list[dict[str, str]]:
    """Chat messages for one evaluation.

    Only stages up to and including ``stage_index`` are shown to the oracle.
    """
    if not 0 <= stage_index < len(case.stages):
        raise ValueError(f"stage {stage_index} out of range for case {case.id}")
    revealed = case.stages[: stage_index + 1]
    return [
        {"role": "system", "content": EVALUATOR.format(title=case.title, theme=case.theme)},
        {
            "role": "user",
            "content": STAGE_ANSWER.format(
                history=format_stage_history(revealed),
                question=revealed[-1].question,
                response=student_response,
            ),
        },
    ]


class FeedbackOracle:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Any = None,
    ):
        # .env values sometimes contain accidental leading spaces
        self.api_key = (api_key or settings.OPENAI_API_KEY or "").strip() or None
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout if timeout is not None else settings.ORACLE_TIMEOUT_SECONDS
        self.client = client

    @property
    def available(self) -> bool:
        return self.client is not None or self.api_key is not None

    async def _create(self, **kwargs) -> Any:
        if self.client is not None:
            return await self.client.chat.completions.create(**kwargs)
        # A client per call: the UI runs each action in its own event loop.
        async with AsyncOpenAI(api_key=self.api_key, max_retries=0) as client:
            return await client.chat.completions.create(**kwargs)

    async def _complete(self, **kwargs) -> Optional[str]:
        if not self.available:
            raise OracleUnavailableError("OPENAI_API_KEY is not set")
        try:
            response = await asyncio.wait_for(self._create(**kwargs), timeout=self.timeout)
        except (asyncio.TimeoutError, openai.APITimeoutError) as e:
            raise OracleTimeoutError(f"oracle did not answer within {self.timeout:.0f}s") from e
        except openai.APIError as e:
            raise OracleError(f"oracle call failed: {e}") from e
        if not response.choices:
            raise OracleResponseError("oracle returned no choices")
        return response.choices[0].message.content

    async def evaluate(
        self, case: ClinicalCase, stage_index: int, student_response: str
    ) -> OracleFeedback:
        """Score ``student_response`` for stage ``stage_index`` of ``case``."""
        messages = build_messages(case, stage_index, student_response)
        try:
            raw_text = await self._complete(
                model=self.model,
                messages=messages,
                response_format={"type": "json_object"},
            )
            feedback = parse_feedback(raw_text)
        except OracleError as e:
            log.error(f"Evaluation failed for case {case.id} stage {stage_index}: {e}")
            raise
        log.info(f"Case {case.id} stage {stage_index} scored {feedback.score}/3")
        return feedback

    async def check_availability(self) -> OracleStatus:
        """Cheap round trip to tell the UI whether scoring will work."""
        if not self.available:
            return OracleStatus(
                available=False,
                message="AI key not configured.",
                detail="Set OPENAI_API_KEY in the environment or .env file.",
            )
        try:
            await self._complete(
                model=self.model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=1,
            )
        except OracleError as e:
            log.warning(f"Oracle availability check failed: {e}")
            return OracleStatus(available=False, message="AI service unreachable.", detail=str(e))
        return OracleStatus(available=True, message="AI online")
