# renovatr/model_props.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import commentjson
from dotenv import load_dotenv

load_dotenv()

DEFAULT_MODEL_CONFIG_PATH = Path(__file__).resolve().parent / "model_config.jsonc"
MODEL_CONFIG_PATH = os.getenv("RENOVATR_MODEL_CONFIG_PATH") or str(DEFAULT_MODEL_CONFIG_PATH)


def _load_model_config(path: str) -> Dict[str, Any]:
    """
    Load tier models + thresholds + pricing from a JSON-with-comments file.
    Fails fast if the file or required top-level keys are missing.
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Model config file not found at '{cfg_path}'.")

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    for key in ("TIER_MODELS", "TIER_THRESHOLDS", "MODEL_BASE_PRICE_TABLE"):
        if key not in data or not isinstance(data[key], dict):
            raise ValueError(f"Model config missing or invalid key: {key}")

    for tier_name in ("economy", "capable"):
        model_name = data["TIER_MODELS"].get(tier_name)
        if not model_name:
            raise ValueError(f"Model config has no model for tier '{tier_name}'")
        base, _ = parse_model_name(model_name)
        if base not in data["MODEL_BASE_PRICE_TABLE"]:
            raise ValueError(f"Model '{base}' for tier '{tier_name}' has no price table entry")

    return data


#! TIERS

def get_model_for_tier(tier) -> str:
    """tier is a ModelTier or its string value."""
    value = getattr(tier, "value", tier)
    return TIER_MODELS[str(value)]


def get_default_threshold(name: str) -> int:
    return int(TIER_THRESHOLDS[name])


#! PRICING API

def _per_million(rate_usd: float, tokens: int) -> float:
    if rate_usd <= 0.0 or tokens <= 0:
        return 0.0
    return rate_usd * (tokens / 1_000_000.0)


def estimate_cost_usd(
    llm_model_name: str,
    prompt_tokens: int,
    completion_tokens: int,
    service_tier: Optional[str] = None,
) -> float:
    """
    Estimate USD cost for a single request from per-1M-token prices.

    - Vertex models with a long band switch rates once prompt_tokens passes long_threshold_tokens.
    - OpenAI models are priced per service tier, falling back to "default".
    """
    pricing = MODEL_BASE_PRICE_TABLE.get(llm_model_name)
    if pricing is None:
        raise ValueError(f"Missing Price Table for Model {llm_model_name}")

    if is_openai_model(llm_model_name):
        pricing = pricing.get(service_tier or "default", pricing.get("default"))
        if not pricing:
            raise ValueError(f"Missing Price Tiers for GPT Model {llm_model_name}")
        in_rate = pricing["input_short"]
        out_rate = pricing["output_short"]
    elif pricing.get("long_threshold_tokens") is not None and pricing.get("input_long") is not None:
        if prompt_tokens > pricing["long_threshold_tokens"]:
            in_rate = pricing["input_long"]
            out_rate = pricing.get("output_long") or pricing["output_short"]
        else:
            in_rate = pricing["input_short"]
            out_rate = pricing["output_short"]
    else:
        in_rate = pricing["input_short"]
        out_rate = pricing["output_short"]

    return float(_per_million(in_rate, prompt_tokens) + _per_million(out_rate, completion_tokens))


# !######################################################################################################
#! UTILS
# !######################################################################################################

def is_openai_model(model_name) -> bool:
    prefixes = ("gpt-", "gpt4", "gpt-4", "gpt-5")
    return any(model_name.startswith(p) for p in prefixes)


def parse_model_name(raw: str) -> Tuple[str, Dict[str, Any]]:
    """Parse strings like:
        - 'gpt-5.1_low_low'
        - 'gpt-5.1_standard'
        - 'gpt-5.1_fast-flex'
    into (base_model, openai_params). Vertex names carry no suffix and parse to (name, {}).
    """
    raw = (raw or "").strip()
    if not raw:
        raise ValueError("parse_model_name: No Model Name passed.")

    parts = raw.split("_")
    base = parts[0]
    if len(parts) <= 1:
        return base, {}

    verbosity: Optional[str] = None
    reasoning_effort: Optional[str] = None
    service_tier: Optional[str] = None

    verbosity_tokens = {"low", "medium", "high"}
    reasoning_tokens = {"none", "minimal", "low", "medium", "high", "xhigh"}
    service_tier_tokens = {"auto", "default", "flex", "priority"}

    # (verbosity, reasoning, service_tier)
    wildcards: Dict[str, Tuple[Optional[str], Optional[str], Optional[str]]] = {
        "standard": ("low", "low", None),
        "std": ("low", "low", None),
        "fast": ("low", "none", None),
        "deep": ("medium", "high", None),
        "standard-flex": ("low", "low", "flex"),
        "fast-flex": ("low", "none", "flex"),
        "deep-flex": ("medium", "high", "flex"),
        "standard-priority": ("low", "low", "priority"),
    }

    unknown = []
    for tok in parts[1:]:
        t = tok.strip().lower()
        if not t:
            continue

        if t in wildcards:
            w_verb, w_reason, w_tier = wildcards[t]
            if verbosity is None and w_verb is not None:
                verbosity = w_verb
            if reasoning_effort is None and w_reason is not None:
                reasoning_effort = w_reason
            if service_tier is None and w_tier is not None:
                service_tier = w_tier
            continue

        if verbosity is None and t in verbosity_tokens:
            verbosity = t
            continue

        if reasoning_effort is None and t in reasoning_tokens:
            reasoning_effort = t
            continue

        if service_tier is None and t in service_tier_tokens:
            service_tier = t
            continue

        unknown.append(t)

    if unknown:
        raise ValueError(f"parse_model_name: Unknown model suffix token(s) {unknown} in '{raw}'.")

    params: Dict[str, Any] = {}
    if verbosity is not None:
        params.setdefault("text", {})["verbosity"] = verbosity
    if reasoning_effort is not None:
        params.setdefault("reasoning", {})["effort"] = reasoning_effort
    params["service_tier"] = service_tier or "default"

    return base, params


_MODEL_CONFIG = _load_model_config(MODEL_CONFIG_PATH)
TIER_MODELS: Dict[str, str] = _MODEL_CONFIG["TIER_MODELS"]
TIER_THRESHOLDS: Dict[str, int] = _MODEL_CONFIG["TIER_THRESHOLDS"]
MODEL_BASE_PRICE_TABLE: Dict[str, Any] = _MODEL_CONFIG["MODEL_BASE_PRICE_TABLE"]
