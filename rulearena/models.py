"""Static model catalog: tiers, capability tags and per-token rates"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

TIER_ORDER = {"basic": 0, "standard": 1, "premium": 2}

# Task types the AUTO_SELECT classifier can produce
TASK_TYPES = ("coding", "analysis", "creative", "math", "general")


@dataclass(frozen=True)
class ModelSpec:
    """
    A callable model and its pricing.

    Rates are USD per single token, so
    cost = input_tokens * input_rate + output_tokens * output_rate.
    """

    id: str
    name: str
    provider: str
    tier: str = "basic"
    capabilities: tuple = field(default_factory=tuple)
    input_rate: float = 0.0
    output_rate: float = 0.0
    is_default: bool = False

    @property
    def tier_rank(self) -> int:
        return TIER_ORDER.get(self.tier, len(TIER_ORDER))

    @property
    def unit_cost(self) -> float:
        """Combined per-token rate, used to rank models for general tasks"""
        return self.input_rate + self.output_rate

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "tier": self.tier,
            "capabilities": list(self.capabilities),
            "input_rate": self.input_rate,
            "output_rate": self.output_rate,
            "is_default": self.is_default,
        }


def _per_million(price: float) -> float:
    return price / 1_000_000


# ============================================================================
# CATALOG
# ============================================================================

_CATALOG: List[ModelSpec] = [
    # --- basic ---
    ModelSpec(
        id="google/gemini-flash-1.5",
        name="Gemini Flash 1.5",
        provider="Google",
        tier="basic",
        capabilities=("general", "analysis"),
        input_rate=_per_million(0.075),
        output_rate=_per_million(0.30),
        is_default=True,
    ),
    ModelSpec(
        id="meta-llama/llama-3.1-8b-instruct",
        name="Llama 3.1 8B",
        provider="Meta",
        tier="basic",
        capabilities=("general",),
        input_rate=_per_million(0.055),
        output_rate=_per_million(0.055),
    ),
    ModelSpec(
        id="mistralai/mistral-7b-instruct",
        name="Mistral 7B",
        provider="Mistral AI",
        tier="basic",
        capabilities=("general",),
        input_rate=_per_million(0.055),
        output_rate=_per_million(0.055),
    ),
    ModelSpec(
        id="anthropic/claude-3-haiku",
        name="Claude 3 Haiku",
        provider="Anthropic",
        tier="basic",
        capabilities=("general", "creative"),
        input_rate=_per_million(0.25),
        output_rate=_per_million(1.25),
    ),
    # --- standard ---
    ModelSpec(
        id="openai/gpt-4o-mini",
        name="GPT-4o Mini",
        provider="OpenAI",
        tier="standard",
        capabilities=("coding", "math"),
        input_rate=_per_million(0.15),
        output_rate=_per_million(0.60),
    ),
    ModelSpec(
        id="anthropic/claude-3.5-sonnet",
        name="Claude 3.5 Sonnet",
        provider="Anthropic",
        tier="standard",
        capabilities=("coding", "analysis"),
        input_rate=_per_million(3.00),
        output_rate=_per_million(15.00),
    ),
    ModelSpec(
        id="google/gemini-pro-1.5",
        name="Gemini Pro 1.5",
        provider="Google",
        tier="standard",
        capabilities=("analysis", "math"),
        input_rate=_per_million(1.25),
        output_rate=_per_million(5.00),
    ),
    ModelSpec(
        id="deepseek/deepseek-coder",
        name="DeepSeek Coder V2",
        provider="DeepSeek",
        tier="standard",
        capabilities=("coding",),
        input_rate=_per_million(0.14),
        output_rate=_per_million(0.28),
    ),
    # --- premium ---
    ModelSpec(
        id="openai/gpt-4o",
        name="GPT-4o",
        provider="OpenAI",
        tier="premium",
        capabilities=("coding", "analysis", "math"),
        input_rate=_per_million(2.50),
        output_rate=_per_million(10.00),
    ),
    ModelSpec(
        id="anthropic/claude-3-opus",
        name="Claude 3 Opus",
        provider="Anthropic",
        tier="premium",
        capabilities=("creative", "analysis"),
        input_rate=_per_million(15.00),
        output_rate=_per_million(75.00),
    ),
    ModelSpec(
        id="meta-llama/llama-3.1-405b-instruct",
        name="Llama 3.1 405B",
        provider="Meta",
        tier="premium",
        capabilities=("creative", "coding"),
        input_rate=_per_million(2.70),
        output_rate=_per_million(2.70),
    ),
]

MODEL_CATALOG: Dict[str, ModelSpec] = {m.id: m for m in _CATALOG}


def get_model(model_id: str, catalog: Optional[Dict[str, ModelSpec]] = None) -> ModelSpec:
    """Look up a model; unknown ids get a zero-rate general-purpose spec."""
    catalog = MODEL_CATALOG if catalog is None else catalog
    spec = catalog.get(model_id)
    if spec is not None:
        return spec
    return ModelSpec(id=model_id, name=model_id, provider="unknown", capabilities=("general",))


def list_models(
    tier: Optional[str] = None, catalog: Optional[Dict[str, ModelSpec]] = None
) -> List[ModelSpec]:
    catalog = MODEL_CATALOG if catalog is None else catalog
    models = list(catalog.values())
    if tier is not None:
        models = [m for m in models if m.tier == tier]
    return models


def calculate_cost(
    model_id: str,
    input_tokens: int,
    output_tokens: int,
    catalog: Optional[Dict[str, ModelSpec]] = None,
) -> float:
    model = get_model(model_id, catalog)
    return input_tokens * model.input_rate + output_tokens * model.output_rate


def default_model(
    candidates: Iterable[str], catalog: Optional[Dict[str, ModelSpec]] = None
) -> str:
    """Pick the lowest-tier model, preferring catalog defaults.

    Ties keep the order of ``candidates``.
    """
    candidates = list(candidates)
    if not candidates:
        raise ValueError("No candidate models to choose a default from")

    def rank(indexed):
        index, model_id = indexed
        spec = get_model(model_id, catalog)
        return (spec.tier_rank, 0 if spec.is_default else 1, index)

    return min(enumerate(candidates), key=rank)[1]
