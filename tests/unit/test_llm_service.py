"""Unit tests for the order parser.

The Qwen2-Audio model is never loaded; generation is replaced by plain
functions returning canned model output.
"""

import asyncio
import threading

import pytest

from tmv_invoice.core.errors import ParserBusyError, ParserError, ParserUnavailableError
from tmv_invoice.services import llm_service
from tmv_invoice.services.llm_service import OrderParser, build_conversation, parse_model_output

MODEL_OUTPUT = """Here is the order:
```json
{
  "customer": {"name": "John", "phone": "08012345678"},
  "items": [{"description": "Dangote 42.5R", "quantity": 50}],
  "deliveryFee": 15000
}
```"""


class TestParseModelOutput:
    def test_fenced_json(self) -> None:
        parsed = parse_model_output(MODEL_OUTPUT)
        assert parsed.customer.name == "John"
        assert parsed.delivery_fee == 15000
        assert parsed.discount_percent is None

    def test_bare_json(self) -> None:
        parsed = parse_model_output('{"notes": "deliver before noon"}')
        assert parsed.notes == "deliver before noon"
        assert parsed.items is None

    def test_missing_unit_price_is_autofilled_from_price_list(self) -> None:
        parsed = parse_model_output(MODEL_OUTPUT)
        assert parsed.items[0].unit_price == 9000

    def test_given_unit_price_is_kept(self) -> None:
        parsed = parse_model_output('{"items": [{"description": "BUA", "quantity": 2, "unitPrice": 8000}]}')
        assert parsed.items[0].unit_price == 8000

    def test_unknown_brand_stays_unpriced(self) -> None:
        parsed = parse_model_output('{"items": [{"description": "Sand", "quantity": 2}]}')
        assert parsed.items[0].unit_price is None

    @pytest.mark.parametrize("raw", ["", "no json here", "{broken", '{"items": "nope"}', "[1, 2]"])
    def test_unusable_output_raises(self, raw: str) -> None:
        with pytest.raises(ParserError):
            parse_model_output(raw)


class TestPrompt:
    def test_text_conversation_carries_order_and_schema(self) -> None:
        conversation = build_conversation("50 bags of Dangote to John", has_audio=False)
        system, user = conversation
        assert "cement" in system["content"]
        assert "Dangote" in system["content"]
        text = user["content"][-1]["text"]
        assert "50 bags of Dangote to John" in text
        assert "deliveryFee" in text
        assert all(part["type"] != "audio" for part in user["content"])

    def test_audio_conversation_includes_audio_part(self) -> None:
        _, user = build_conversation("transcript", has_audio=True)
        assert user["content"][0]["type"] == "audio"
        assert "transcript" in user["content"][-1]["text"]


class TestOrderParser:
    def test_parses_text(self) -> None:
        calls = []

        def generate(text=None, audio_bytes=None):
            calls.append((text, audio_bytes))
            return MODEL_OUTPUT

        parsed = asyncio.run(OrderParser(generate=generate, timeout_seconds=0).parse(text="50 bags"))
        assert parsed.customer.phone == "08012345678"
        assert calls == [("50 bags", None)]

    def test_passes_audio_through(self) -> None:
        seen = {}

        def generate(text=None, audio_bytes=None):
            seen["audio"] = audio_bytes
            return '{"notes": "voice"}'

        asyncio.run(OrderParser(generate=generate).parse(audio_bytes=b"RIFF"))
        assert seen["audio"] == b"RIFF"

    def test_empty_input_is_rejected(self) -> None:
        with pytest.raises(ParserError):
            asyncio.run(OrderParser(generate=lambda **_: MODEL_OUTPUT).parse(text="   "))

    def test_second_parse_while_in_flight_is_rejected(self) -> None:
        release = threading.Event()

        def slow_generate(text=None, audio_bytes=None):
            release.wait(5)
            return MODEL_OUTPUT

        async def scenario():
            parser = OrderParser(generate=slow_generate, timeout_seconds=0)
            first = asyncio.create_task(parser.parse(text="first"))
            await asyncio.sleep(0.05)
            assert parser.busy is True
            with pytest.raises(ParserBusyError):
                await parser.parse(text="second")
            release.set()
            result = await first
            assert parser.busy is False
            return result

        assert asyncio.run(scenario()).customer.name == "John"

    def test_timeout_keeps_parser_busy_until_model_call_ends(self) -> None:
        release = threading.Event()
        running = []

        def slow_generate(text=None, audio_bytes=None):
            running.append(text)
            release.wait(5)
            running.remove(text)
            return MODEL_OUTPUT

        async def scenario():
            parser = OrderParser(generate=slow_generate, timeout_seconds=0.05)
            try:
                with pytest.raises(ParserError, match="timed out after 0.05 seconds"):
                    await parser.parse(text="slow")
                assert parser.busy is True
                with pytest.raises(ParserBusyError):
                    await parser.parse(text="second")
                assert running == ["slow"]
            finally:
                release.set()
            for _ in range(200):
                if not parser.busy:
                    break
                await asyncio.sleep(0.01)
            assert parser.busy is False
            return await parser.parse(text="third")

        assert asyncio.run(scenario()).customer.name == "John"

    def test_unexpected_model_failure_becomes_parser_error(self) -> None:
        def crashing_generate(text=None, audio_bytes=None):
            raise RuntimeError("CUDA out of memory")

        parser = OrderParser(generate=crashing_generate)
        with pytest.raises(ParserError, match="Parsing failed: CUDA out of memory") as excinfo:
            asyncio.run(parser.parse(text="x"))
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert parser.busy is False

    def test_generation_failure_frees_parser(self) -> None:
        def failing_generate(text=None, audio_bytes=None):
            raise ParserUnavailableError("not loaded")

        parser = OrderParser(generate=failing_generate)
        with pytest.raises(ParserUnavailableError):
            asyncio.run(parser.parse(text="x"))
        assert parser.busy is False


def test_generate_without_model_is_unavailable(monkeypatch) -> None:
    monkeypatch.setattr(llm_service, "qwen2_audio_model", None)
    monkeypatch.setattr(llm_service, "qwen2_audio_processor", None)
    with pytest.raises(ParserUnavailableError):
        llm_service.generate_order_json(text="50 bags")
