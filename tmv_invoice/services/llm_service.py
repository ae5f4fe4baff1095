# tmv_invoice/services/llm_service.py

import asyncio
import logging
from functools import partial
from io import BytesIO
from typing import Any, Dict, Optional

import anyio.to_thread

from tmv_invoice.config import (
    BUSINESS_NAME, QWEN2_AUDIO_MODEL_NAME, PARSE_MAX_NEW_TOKENS, PARSE_TIMEOUT_SECONDS,
    cement_price_list,
)
from tmv_invoice.core.errors import ParserBusyError, ParserError, ParserUnavailableError
from tmv_invoice.core.utils import autofill_parsed_order, clear_gpu_memory, extract_json_object
from tmv_invoice.models import ParsedOrder

logger = logging.getLogger(__name__)

# Global variables to hold model instances for efficiency.
# torch, transformers and librosa are heavy, so they are imported on load.
qwen2_audio_processor = None
qwen2_audio_model = None
device = None


def detect_device() -> str:
    import torch

    return "cuda" if torch.cuda.is_available() else "cpu"


def load_qwen2_audio_model() -> str:
    """
    Loads the Qwen2-Audio processor and model once per process and returns a
    human-readable status. On cuda the weights are quantized to 8 bits.
    Never raises: a failed load leaves parsing unavailable.
    """
    global qwen2_audio_processor, qwen2_audio_model, device

    if is_model_loaded():
        logger.info("Qwen2-Audio model already loaded on %s.", device)
        return f"Qwen2-Audio model already loaded on {device}."

    try:
        import torch
        from transformers import AutoProcessor, Qwen2AudioForConditionalGeneration

        device = detect_device()
        logger.info("Loading %s on %s", QWEN2_AUDIO_MODEL_NAME, device)
        model_kwargs: Dict[str, Any] = {"device_map": "auto", "trust_remote_code": True}
        if device == "cuda":
            from transformers import BitsAndBytesConfig

            model_kwargs["quantization_config"] = BitsAndBytesConfig(load_in_8bit=True)
            model_kwargs["torch_dtype"] = torch.float16
        else:
            model_kwargs["torch_dtype"] = torch.float32

        processor = AutoProcessor.from_pretrained(QWEN2_AUDIO_MODEL_NAME, trust_remote_code=True)
        model = Qwen2AudioForConditionalGeneration.from_pretrained(QWEN2_AUDIO_MODEL_NAME, **model_kwargs)
        model.eval()
    except Exception as e:
        logger.error("Could not load %s: %s", QWEN2_AUDIO_MODEL_NAME, e)
        qwen2_audio_processor = None
        qwen2_audio_model = None
        try:
            clear_gpu_memory()
        except ImportError:
            pass
        return f"Failed to load Qwen2-Audio model: {e}"

    qwen2_audio_processor, qwen2_audio_model = processor, model
    logger.info("Qwen2-Audio model ready on %s", device)
    return f"Qwen2-Audio model loaded on {device}."


def is_model_loaded() -> bool:
    return qwen2_audio_model is not None and qwen2_audio_processor is not None


# The JSON layout the model must answer with; mirrors ParsedOrder.
ORDER_JSON_SCHEMA = """
{
  "customer": {"name": "string", "phone": "string", "address": "string"},
  "items": [
    {"description": "string (cement brand and grade, e.g. Dangote 42.5R)", "quantity": "integer (bags)", "unitPrice": "number (price per bag)"}
  ],
  "deliveryFee": "number",
  "discountPercent": "number (0-100)",
  "notes": "string"
}
"""


def build_system_instruction() -> str:
    price_lines = ", ".join(
        f"{info['description']} {info['unit_price']:,.0f}" for info in cement_price_list.values()
    )
    return (
        f"You are an assistant for {BUSINESS_NAME}, a cement seller. Your goal is to extract customer details, "
        "items (cement brands, quantity in bags, price per bag), any delivery fee and any discount from the order. "
        f"If specific prices aren't mentioned, use these defaults: {price_lines}. "
        "Amounts like '15k' mean 15000. "
        "Your output MUST be a single valid JSON object matching the provided schema. "
        "Do not include any other text. Omit any field that is not mentioned."
    )


def build_conversation(text: Optional[str], has_audio: bool) -> list:
    """
    Creates the chat conversation asking the model for structured order data,
    either from typed text or from a voice note (with an optional transcript).
    """
    user_content = []
    if has_audio:
        user_content.append({"type": "audio", "audio_url": "order-audio"})
        request = "Parse the spoken order in this audio into structured invoice data for a cement business."
        if text:
            request += f' A transcript was provided: "{text}"'
    else:
        request = f'Parse the following text into structured invoice data for a cement business: "{text}"'
    user_content.append({"type": "text", "text": f"{request}\nHere's the schema: {ORDER_JSON_SCHEMA}"})

    return [
        {"role": "system", "content": build_system_instruction()},
        {"role": "user", "content": user_content},
    ]


def load_audio(audio_bytes: bytes) -> Any:
    """Decodes an audio payload at the sampling rate the processor expects."""
    import librosa

    try:
        audio, _ = librosa.load(BytesIO(audio_bytes), sr=qwen2_audio_processor.feature_extractor.sampling_rate)
    except Exception as e:
        raise ParserError(f"Error decoding audio payload: {e}")
    return audio


def generate_order_json(text: Optional[str] = None, audio_bytes: Optional[bytes] = None) -> str:
    """
    Runs the model over text or audio and returns its raw decoded output.
    Blocking; callers on the event loop go through OrderParser.
    """
    if not is_model_loaded():
        raise ParserUnavailableError("Qwen2-Audio model is not loaded. Please call /load_model/ first.")

    import torch

    conversation = build_conversation(text, has_audio=audio_bytes is not None)
    prompt = qwen2_audio_processor.apply_chat_template(conversation, add_generation_prompt=True, tokenize=False)

    processor_kwargs: Dict[str, Any] = {"text": prompt, "return_tensors": "pt", "padding": True}
    if audio_bytes is not None:
        processor_kwargs["audio"] = [load_audio(audio_bytes)]
        processor_kwargs["sampling_rate"] = qwen2_audio_processor.feature_extractor.sampling_rate

    inputs = qwen2_audio_processor(**processor_kwargs)
    inputs = {k: v.to(device) for k, v in inputs.items()} # Move inputs to correct device
    original_input_len = inputs["input_ids"].shape[1]

    with torch.no_grad():
        generated_ids = qwen2_audio_model.generate(**inputs, max_new_tokens=PARSE_MAX_NEW_TOKENS)

    # Skip the prompt tokens
    return qwen2_audio_processor.decode(generated_ids[0, original_input_len:], skip_special_tokens=True)


def parse_model_output(raw_output: str) -> ParsedOrder:
    """
    Validates raw model output into a ParsedOrder and autofills missing
    unit prices from the default price list.

    Raises:
        ParserError: If the output holds no usable JSON object.
    """
    logger.debug("Parser raw output:\n%s", raw_output)
    try:
        extracted_data = extract_json_object(raw_output)
        parsed = ParsedOrder.model_validate(extracted_data)
    except ValueError as e: # ValidationError is a ValueError
        raise ParserError(f"Parser returned unusable output: {e}")
    return autofill_parsed_order(parsed)


class OrderParser:
    """
    Serializes parse requests: one request at a time, the next one is
    rejected while a parse is in flight rather than queued behind it.

    A parse that times out returns to the caller right away, but the parser
    stays busy until the model call behind it has actually finished.
    """

    def __init__(self, generate=generate_order_json, timeout_seconds: float = PARSE_TIMEOUT_SECONDS):
        self._generate = generate
        self.timeout_seconds = timeout_seconds
        self._in_flight = False

    @property
    def busy(self) -> bool:
        return self._in_flight

    def _worker_finished(self, worker: asyncio.Future):
        self._in_flight = False
        if not worker.cancelled() and worker.exception() is not None:
            logger.debug("Model call finished with %r", worker.exception())

    async def parse(self, text: Optional[str] = None, audio_bytes: Optional[bytes] = None) -> ParsedOrder:
        """
        Parses free text or an audio payload into a partial order.

        Raises:
            ParserBusyError: If another parse is still running.
            ParserUnavailableError: If the model is not loaded.
            ParserError: On timeout, a failing model call or unusable model output.
        """
        if not (text and text.strip()) and not audio_bytes:
            raise ParserError("Nothing to parse: provide order text or audio.")
        if self._in_flight:
            raise ParserBusyError("Another order is still being parsed. Please wait for it to finish.")

        self._in_flight = True
        worker = asyncio.ensure_future(
            anyio.to_thread.run_sync(partial(self._generate, text=text, audio_bytes=audio_bytes))
        )
        worker.add_done_callback(self._worker_finished)
        try:
            # Shielded: a timeout stops the wait, not the model call
            if self.timeout_seconds and self.timeout_seconds > 0:
                raw_output = await asyncio.wait_for(asyncio.shield(worker), timeout=self.timeout_seconds)
            else:
                raw_output = await asyncio.shield(worker)
        except asyncio.TimeoutError:
            logger.warning("Parse timed out after %gs; model call still running", self.timeout_seconds)
            raise ParserError(f"Parsing timed out after {self.timeout_seconds:g} seconds.")
        except ParserError:
            raise
        except Exception as e:
            logger.error("Model call failed: %s", e)
            raise ParserError(f"Parsing failed: {e}") from e

        parsed = parse_model_output(raw_output)
        logger.info("Parsed order: %s", parsed.model_dump_json(exclude_none=True, by_alias=True))
        return parsed
