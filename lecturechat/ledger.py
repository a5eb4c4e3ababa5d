"""Versioned provider price table and usage/cost accounting.

Every billable call is written as a ``UsageRecord`` that stores the rates
applied at call time. Aggregation only ever reads those stored rates, so
historical figures do not move when the live price table changes.
"""

import os
import uuid
from collections import defaultdict
from pathlib import Path

from pydantic import BaseModel, Field

from lecturechat.chat.schemas import ModelTier, UsageOperation, UsageRecord
from lecturechat.utils.logging import get_logger

logger = get_logger(__name__)


class ModelPrice(BaseModel):
    """USD per million tokens."""

    input_rate: float
    output_rate: float = 0.0


DEFAULT_MODEL_PRICES: dict[str, ModelPrice] = {
    "gpt-4o-mini": ModelPrice(input_rate=0.15, output_rate=0.60),
    "gpt-4o": ModelPrice(input_rate=2.50, output_rate=10.00),
    "gpt-4.1-mini": ModelPrice(input_rate=0.40, output_rate=1.60),
    "gpt-4.1": ModelPrice(input_rate=2.00, output_rate=8.00),
    "text-embedding-3-small": ModelPrice(input_rate=0.02),
    "text-embedding-3-large": ModelPrice(input_rate=0.13),
}


class PriceTable(BaseModel):
    """Provider prices in effect for a given version."""

    version: str = "2025-01"
    models: dict[str, ModelPrice] = Field(
        default_factory=lambda: dict(DEFAULT_MODEL_PRICES)
    )
    transcription_per_minute: float = 0.006

    def price_for(self, model: str) -> ModelPrice:
        price = self.models.get(model)
        if price is None:
            logger.warning("model_price_missing", model=model, version=self.version)
            return ModelPrice(input_rate=0.0)
        return price

    def usage_record(
        self,
        tenant_id: str,
        operation: UsageOperation,
        model: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        minutes: float = 0.0,
        tier: ModelTier | None = None,
        session_id: str | None = None,
        requester_id: str | None = None,
        message_id: str | None = None,
        video_id: str | None = None,
    ) -> UsageRecord:
        """Price one call and capture the applied rates on the record."""
        if operation is UsageOperation.TRANSCRIPTION:
            input_rate, output_rate = 0.0, 0.0
            minute_rate = self.transcription_per_minute
        else:
            price = self.price_for(model)
            input_rate, output_rate, minute_rate = price.input_rate, price.output_rate, 0.0

        record = UsageRecord(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            operation=operation,
            model=model,
            tier=tier,
            price_version=self.version,
            session_id=session_id,
            requester_id=requester_id,
            message_id=message_id,
            video_id=video_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            minutes=minutes,
            input_rate=input_rate,
            output_rate=output_rate,
            minute_rate=minute_rate,
        )
        record.cost_usd = record.computed_cost()
        return record


def load_price_table() -> PriceTable:
    """Load the price table from ``PRICE_TABLE_PATH`` (JSON) or use defaults.

    ``TRANSCRIPTION_COST_PER_MINUTE`` overrides the per-minute rate of the
    default table.
    """
    path = os.getenv("PRICE_TABLE_PATH")
    if path:
        table = PriceTable.model_validate_json(Path(path).read_text())
        logger.info("price_table_loaded", path=path, version=table.version)
        return table

    return PriceTable(
        transcription_per_minute=float(
            os.getenv("TRANSCRIPTION_COST_PER_MINUTE", "0.006")
        )
    )


class CostSummary(BaseModel):
    """Cost totals reduced from usage records."""

    total_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    transcription_minutes: float = 0.0
    by_operation: dict[str, float] = Field(default_factory=dict)
    by_model: dict[str, float] = Field(default_factory=dict)
    by_tier: dict[str, float] = Field(default_factory=dict)
    calls: int = 0


def aggregate_costs(records: list[UsageRecord]) -> CostSummary:
    """Reduce usage records to totals using each record's stored rates."""
    by_operation: dict[str, float] = defaultdict(float)
    by_model: dict[str, float] = defaultdict(float)
    by_tier: dict[str, float] = defaultdict(float)
    summary = CostSummary()

    for record in records:
        cost = record.computed_cost()
        summary.total_usd += cost
        summary.input_tokens += record.input_tokens
        summary.output_tokens += record.output_tokens
        summary.transcription_minutes += record.minutes
        summary.calls += 1
        by_operation[record.operation.value] += cost
        by_model[record.model] += cost
        if record.tier is not None:
            by_tier[record.tier.value] += cost

    summary.by_operation = dict(by_operation)
    summary.by_model = dict(by_model)
    summary.by_tier = dict(by_tier)
    return summary
