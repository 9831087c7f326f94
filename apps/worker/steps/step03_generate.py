"""
Step 3: Summary generation.
Calls the model with bounded retry. Overload that outlasts the retry budget
yields the overload fallback instead of an error.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from apps.worker.steps.step04_sanitize import fallback_summary
from packages.shared.config import PipelineSettings
from packages.shared.errors import RetryExhaustedError
from packages.shared.gemini import SUMMARY_CONFIG, GeminiClient, text_part
from packages.shared.models import FallbackReason, SanitizedSummary
from packages.shared.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationOutcome:
    raw_text: Optional[str] = None
    fallback: Optional[SanitizedSummary] = None


def summary_retry_policy(settings: PipelineSettings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max(1, settings.summary_max_attempts),
        base_delay_seconds=settings.summary_retry_base_seconds,
    )


def generate_summary_text(
    prompt: str,
    *,
    appointment_id: str,
    client: GeminiClient,
    settings: PipelineSettings,
    sleep: Callable[[float], None] = time.sleep,
) -> GenerationOutcome:
    try:
        raw = call_with_retry(
            lambda: client.generate_content([text_part(prompt)], SUMMARY_CONFIG),
            summary_retry_policy(settings),
            sleep=sleep,
            label=f"[{appointment_id}] Clinical summary generation",
        )
    except RetryExhaustedError as exc:
        logger.error(f"[{appointment_id}] AI service overloaded after {exc.attempts} attempts; using fallback summary")
        return GenerationOutcome(fallback=fallback_summary(FallbackReason.UPSTREAM_OVERLOADED))

    logger.info(f"[{appointment_id}] AI response received ({len(raw)} chars)")
    return GenerationOutcome(raw_text=raw)
