"""Running estimate of what the AI calls of one run have cost."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .config import CostTrackingConfig, PricingConfig
from .errors import CostLimitExceededError

logger = logging.getLogger("site_snacker")

VISION = "vision"
AUDIO = "audio"


@dataclass
class CostMetric:
    """One billed API call."""

    category: str
    model: str
    cost: float
    prompt_tokens: int = 0
    completion_tokens: int = 0
    images: int = 0
    audio_seconds: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class CostTracker:
    """In-memory ledger of API spend, priced from the configured table.

    Costs are kept unrounded; only ``get_summary`` formats them.
    """

    def __init__(
        self,
        pricing: Optional[PricingConfig] = None,
        limits: Optional[CostTrackingConfig] = None,
    ) -> None:
        self.pricing = pricing or PricingConfig()
        self.limits = limits or CostTrackingConfig()
        self.metrics: List[CostMetric] = []
        self._warned = False

    def vision_cost(self, prompt_tokens: int, completion_tokens: int, image_count: int = 1) -> float:
        table = self.pricing.vision
        input_cost = (prompt_tokens / 1000) * table.input_per_1k
        output_cost = (completion_tokens / 1000) * table.output_per_1k
        image_cost = image_count * table.per_image
        return input_cost + output_cost + image_cost

    def audio_cost(self, duration_seconds: float) -> float:
        return (duration_seconds / 60) * self.pricing.audio.per_minute

    def track_vision(
        self,
        prompt_tokens: int,
        completion_tokens: int,
        image_count: int = 1,
        model: str = "",
    ) -> float:
        cost = self.vision_cost(prompt_tokens, completion_tokens, image_count)
        self._record(
            CostMetric(
                category=VISION,
                model=model,
                cost=cost,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                images=image_count,
            )
        )
        return cost

    def track_audio(self, duration_seconds: float, model: str = "") -> float:
        cost = self.audio_cost(duration_seconds)
        self._record(
            CostMetric(category=AUDIO, model=model, cost=cost, audio_seconds=duration_seconds)
        )
        return cost

    def _record(self, metric: CostMetric) -> None:
        self.metrics.append(metric)
        total = self.total_cost
        warn_at = self.limits.warn_threshold
        if self.limits.enabled and warn_at > 0 and total >= warn_at and not self._warned:
            self._warned = True
            logger.warning("Estimated API spend $%.4f has passed $%.4f", total, warn_at)

    def check_budget(self) -> None:
        """Raise before an AI call once the stop threshold has been reached."""
        stop_at = self.limits.stop_threshold
        if self.limits.enabled and stop_at > 0 and self.total_cost >= stop_at:
            raise CostLimitExceededError(
                f"Estimated API spend ${self.total_cost:.4f} reached the ${stop_at:.4f} limit"
            )

    @property
    def total_cost(self) -> float:
        return sum(metric.cost for metric in self.metrics)

    @property
    def call_count(self) -> int:
        return len(self.metrics)

    def subtotal(self, category: str) -> float:
        return sum(metric.cost for metric in self.metrics if metric.category == category)

    def get_summary(self) -> str:
        lines = ["", "API Usage Summary:", "------------------", ""]
        images = [metric for metric in self.metrics if metric.category == VISION]
        audio = [metric for metric in self.metrics if metric.category == AUDIO]

        if images:
            lines.append("Image Processing:")
            for index, metric in enumerate(images, start=1):
                lines.append(f"  Image #{index}:")
                lines.append(f"    Model: {metric.model}")
                lines.append(
                    f"    Tokens: {metric.total_tokens} "
                    f"({metric.prompt_tokens} prompt, {metric.completion_tokens} completion)"
                )
                lines.append(f"    Cost: ${metric.cost:.4f}")
            lines.append(f"  Subtotal: ${self.subtotal(VISION):.4f}")
            lines.append("")

        if audio:
            lines.append("Audio Processing:")
            for index, metric in enumerate(audio, start=1):
                lines.append(f"  Audio #{index}:")
                lines.append(f"    Model: {metric.model}")
                lines.append(f"    Duration: {metric.audio_seconds:.1f} seconds")
                lines.append(f"    Cost: ${metric.cost:.4f}")
            lines.append(f"  Subtotal: ${self.subtotal(AUDIO):.4f}")
            lines.append("")

        lines.append(f"Total Estimated Cost: ${self.total_cost:.4f}")
        return "\n".join(lines) + "\n"
