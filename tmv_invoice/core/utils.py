# tmv_invoice/core/utils.py

import gc
import re
import json
import math
import logging
from datetime import datetime
from typing import Dict, Any, Optional

from tmv_invoice.config import CURRENCY_SYMBOL, cement_price_list
from tmv_invoice.models import ParsedOrder

logger = logging.getLogger(__name__)

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)
_JSON_BARE_RE = re.compile(r"(\{.*\})", re.DOTALL)


def to_number(value: Any) -> float:
    """
    Parses a form or parser value as a number, defaulting to 0 on failure.
    Accepts thousands separators and a trailing 'k' ("15k" -> 15000).
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    if isinstance(value, str):
        text = value.strip().lower().replace(",", "").replace(CURRENCY_SYMBOL, "")
        multiplier = 1.0
        if text.endswith("k"):
            text, multiplier = text[:-1], 1000.0
        try:
            number = float(text) * multiplier
        except ValueError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


def to_quantity(value: Any) -> int:
    """Whole, non-negative bag count; anything unparseable becomes 0."""
    return max(0, int(to_number(value)))


def to_amount(value: Any) -> float:
    """Non-negative money amount; anything unparseable becomes 0."""
    return max(0.0, to_number(value))


def format_currency(amount: float, symbol: str = CURRENCY_SYMBOL) -> str:
    """Formats an amount the way Naira prices are printed, e.g. '₦9,000.00'."""
    amount = to_number(amount)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def digits_only(text: Optional[str]) -> str:
    return re.sub(r"\D", "", text or "")


def extract_json_object(raw_output: str) -> Dict[str, Any]:
    """
    Pulls the JSON object out of raw model output, preferring a fenced
    ```json block and falling back to the outermost braces.

    Raises:
        ValueError: If no JSON object can be found or decoded.
    """
    json_match = _JSON_FENCE_RE.search(raw_output or "")
    if not json_match:
        json_match = _JSON_BARE_RE.search(raw_output or "")
    if not json_match:
        raise ValueError("Could not extract a valid JSON object from model output.")

    json_str = json_match.group(1)
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to decode JSON from model output: {e}. Raw output: {json_str}")
    if not isinstance(data, dict):
        raise ValueError("Model output JSON is not an object.")
    return data


def lookup_cement_price(description: Optional[str]) -> Optional[float]:
    """Returns the default price of the first brand named in `description`."""
    if not description:
        return None
    normalized_description = description.lower().strip()
    for brand, info in cement_price_list.items():
        if brand in normalized_description: # Simple substring match
            return info.get("unit_price")
    return None


def autofill_parsed_order(parsed: ParsedOrder) -> ParsedOrder:
    """
    Fills missing unit prices of parsed items from the default price list.
    Prices the parser did return are kept as they are.
    """
    if not parsed.items:
        return parsed

    parsed_copy = parsed.model_copy(deep=True)
    for item in parsed_copy.items:
        if item.unit_price is None:
            default_price = lookup_cement_price(item.description)
            if default_price is not None:
                item.unit_price = default_price
                logger.debug("Autofilled unit price %.2f for '%s'", default_price, item.description)
    return parsed_copy


def clear_gpu_memory():
    """Clears CUDA memory cache and runs garbage collection."""
    import torch

    if torch.cuda.is_available():
        torch.cuda.empty_cache()
    gc.collect()


def check_model_devices(model: Optional[Any], device: str) -> str:
    """Where the parser model lives and, on cuda, how much GPU memory it holds."""
    if model is None:
        lines = ["Parser model: not loaded."]
    else:
        try:
            placement = getattr(model, "hf_device_map", None) or next(model.parameters()).device
            lines = [f"Parser model placement: {placement}",
                     f"Parser model dtype: {next(model.parameters()).dtype}"]
        except Exception as e:
            lines = [f"Parser model placement unknown: {e}"]

    lines.append(f"Detected device: {device}")
    if device == "cuda":
        import torch

        gib = 1024 ** 3
        lines.append(f"GPU memory allocated: {torch.cuda.memory_allocated() / gib:.2f} GB "
                     f"(peak {torch.cuda.max_memory_allocated() / gib:.2f} GB, "
                     f"{torch.cuda.device_count()} device(s))")
    return "\n".join(lines)


def display_date(iso_date: str) -> str:
    """Day/month/year as printed in Nigeria; unparseable dates pass through."""
    try:
        return datetime.fromisoformat(iso_date).strftime("%d/%m/%Y")
    except (TypeError, ValueError):
        return iso_date
