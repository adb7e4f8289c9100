import asyncio
import json

import pytest

from conftest import FakeProvider, mcq_items, mcq_json
from generation.question_generator import QuestionGenerator, parse_question, sanitize
from generation.schemas import PaperSpec
from services.errors import GenerationFailed, IncompleteGeneration, InvalidRequest

FAST = {"attempts": 3, "base_delay": 0, "max_delay": 0, "jitter": False}


def spec(count=12, **overrides):
    fields = dict(
        class_name="8",
        subject="Math",
        syllabus="CBSE",
        chapter_from="1",
        chapter_to="3",
        language="English",
        count=count,
    )
    fields.update(overrides)
    return PaperSpec(**fields)


def test_twelve_questions_take_two_chunks_and_are_renumbered():
    # Provider numbers both chunks from 1; the result must still be 1..12
    provider = FakeProvider([mcq_json(10, first=1), mcq_json(2, first=1)])
    generator = QuestionGenerator(provider, chunk_size=10, retry_options=FAST)

    questions = asyncio.run(generator.generate(spec(12)))

    assert provider.calls == 2
    assert [q.question_number for q in questions] == list(range(1, 13))
    assert "Generate exactly 10" in provider.prompts[0]
    assert "Generate exactly 2" in provider.prompts[1]


def test_every_question_has_exact_keys_and_valid_answer():
    provider = FakeProvider([mcq_json(5)])
    questions = asyncio.run(QuestionGenerator(provider, retry_options=FAST).generate(spec(5)))

    for q in questions:
        assert set(q.choices) == {"A", "B", "C", "D"}
        assert q.correct_answer in q.choices
        assert all(v.strip() for v in q.choices.values())


def test_invalid_entries_are_dropped_in_lenient_mode():
    items = mcq_items(4)
    items[1]["correctAnswer"] = "Z"
    items[2]["choices"].pop("D")
    provider = FakeProvider([json.dumps(items)])
    generator = QuestionGenerator(provider, strict_count=False, retry_options=FAST)

    questions = asyncio.run(generator.generate(spec(4)))

    assert [q.question for q in questions] == [items[0]["question"], items[3]["question"]]
    assert [q.question_number for q in questions] == [1, 2]


def test_short_chunk_fails_after_retries_in_strict_mode():
    provider = FakeProvider(handler=lambda prompt: mcq_json(3))
    generator = QuestionGenerator(provider, strict_count=True, retry_options=FAST)

    with pytest.raises(GenerationFailed) as exc_info:
        asyncio.run(generator.generate(spec(5)))

    assert provider.calls == 3
    assert isinstance(exc_info.value.cause, IncompleteGeneration)
    assert exc_info.value.cause.expected == 5
    assert exc_info.value.cause.got == 3


def test_excess_questions_are_truncated_in_lenient_mode():
    provider = FakeProvider([mcq_json(7)])
    generator = QuestionGenerator(provider, strict_count=False, retry_options=FAST)

    questions = asyncio.run(generator.generate(spec(5)))

    assert len(questions) == 5


def test_malformed_output_is_retried_then_succeeds():
    provider = FakeProvider(["sorry, I cannot do that", RuntimeError("503"), mcq_json(2)])
    questions = asyncio.run(QuestionGenerator(provider, retry_options=FAST).generate(spec(2)))

    assert provider.calls == 3
    assert len(questions) == 2


def test_zero_valid_questions_exhausts_retries():
    provider = FakeProvider(handler=lambda prompt: json.dumps([{"questionNumber": 1, "question": ""}]))
    with pytest.raises(GenerationFailed) as exc_info:
        asyncio.run(QuestionGenerator(provider, retry_options=FAST).generate(spec(1)))

    assert provider.calls == 3
    assert isinstance(exc_info.value.cause, ValueError)


def test_slow_provider_times_out_and_fails():
    class SlowProvider(FakeProvider):
        async def complete(self, prompt, **kwargs):
            self.prompts.append(prompt)
            await asyncio.sleep(1)
            return mcq_json(1)

    provider = SlowProvider()
    generator = QuestionGenerator(provider, timeout=0.01, retry_options={**FAST, "attempts": 2})

    with pytest.raises(GenerationFailed) as exc_info:
        asyncio.run(generator.generate(spec(1)))

    assert provider.calls == 2
    assert isinstance(exc_info.value.cause, asyncio.TimeoutError)


def test_missing_fields_fail_before_any_provider_call():
    provider = FakeProvider()
    generator = QuestionGenerator(provider, retry_options=FAST)

    with pytest.raises(InvalidRequest) as exc_info:
        asyncio.run(generator.generate(spec(5, syllabus=None, language="  ")))

    assert "syllabus" in exc_info.value.message
    assert "language" in exc_info.value.message
    assert provider.calls == 0


def test_count_must_be_positive():
    with pytest.raises(InvalidRequest):
        asyncio.run(QuestionGenerator(FakeProvider()).generate(spec(0)))


def test_five_option_papers():
    provider = FakeProvider([mcq_json(2, keys="ABCDE")])
    generator = QuestionGenerator(provider, choice_keys="ABCDE", retry_options=FAST)

    questions = asyncio.run(generator.generate(spec(2)))

    assert set(questions[0].choices) == {"A", "B", "C", "D", "E"}


def test_parse_question_normalizes_keys_and_answer():
    q = parse_question({
        "questionNumber": "4",
        "question": "  Pick one ",
        "choices": {"a": "x", "b": "y", "c": "z", "d": "w"},
        "correctAnswer": "c",
    })
    assert q.question == "Pick one"
    assert q.correct_answer == "C"
    assert list(q.choices) == ["A", "B", "C", "D"]


def test_parse_question_rejects_non_numeric_number():
    item = mcq_items(1)[0]
    item["questionNumber"] = "one"
    assert parse_question(item) is None


def test_sanitize_strips_non_ascii_for_english_only():
    assert sanitize("café ‘ok’", ascii_only=True) == "caf 'ok'"
    assert sanitize("क्या", ascii_only=False) == "क्या"


@pytest.mark.parametrize("number", [float("nan"), float("inf"), float("-inf")])
def test_parse_question_rejects_non_finite_number(number):
    item = mcq_items(1)[0]
    item["questionNumber"] = number
    assert parse_question(item) is None


def test_nan_question_number_is_dropped_not_retried():
    items = mcq_items(2)
    items[0]["questionNumber"] = float("nan")
    provider = FakeProvider([json.dumps(items)])
    generator = QuestionGenerator(provider, strict_count=False, retry_options=FAST)

    questions = asyncio.run(generator.generate(spec(2)))

    assert provider.calls == 1
    assert [q.question for q in questions] == [items[1]["question"]]
