"""
Question Generation Engine

Turns a curriculum request (class, subject, syllabus, chapter range, language,
count) into a validated, sequentially numbered list of MCQs.

  1. Split `count` into chunks of at most QUESTION_CHUNK_SIZE
  2. One GPT call per chunk, each under a timeout with retry + backoff
  3. Sanitize, extract the JSON array, drop invalid entries
  4. Concatenate in arrival order and renumber 1..N

Count policy (STRICT_QUESTION_COUNT, default on): a chunk must yield exactly
the number of questions it asked for, otherwise the chunk is retried; when the
retries are exhausted the whole generation fails. With the policy off, short
chunks are accepted and long ones truncated.
"""

import logging
import math
import os
import re
from typing import Any, Iterable, List, Optional

from generation.gpt_client import ContentProvider, call_with_retry, extract_json_array
from generation.schemas import GeneratedQuestion, PaperSpec
from services.errors import IncompleteGeneration, InvalidRequest

log = logging.getLogger("generation.pipeline")

# ── Config ────────────────────────────────────────────────────────────────────
QUESTION_CHUNK_SIZE = int(os.getenv("QUESTION_CHUNK_SIZE", "10"))
QUESTION_TIMEOUT_SECONDS = float(os.getenv("QUESTION_TIMEOUT_SECONDS", "30"))
STRICT_QUESTION_COUNT = os.getenv("STRICT_QUESTION_COUNT", "true").lower() in ("1", "true", "yes")
CHOICE_KEYS = tuple(os.getenv("CHOICE_KEYS", "ABCD").upper())

REQUIRED_FIELDS = ("class_name", "subject", "syllabus", "chapter_from", "chapter_to", "language")


# ─── MCQ Generation Prompt ─────────────────────────────────────────────────────

MCQ_PROMPT = """Generate exactly {count} multiple-choice questions for a {subject} exam
for class {class_name} based on the {syllabus} syllabus, covering chapters {chapter_from} to {chapter_to}.
The questions should be in {language}.

Important formatting rules:
1. Use only standard ASCII characters
2. Avoid special characters or symbols
3. Keep questions concise and clear
4. Every question has exactly the options {keys_list} and one correct answer

Return the response in this exact JSON format:
[
  {{
    "questionNumber": {first_number},
    "question": "question text",
    "choices": {{
{choices_block}
    }},
    "correctAnswer": "{first_key}"
  }}
]

Respond with only the JSON array, no additional text."""


# ─── Sanitizing ────────────────────────────────────────────────────────────────

_SMART_SINGLE = re.compile("[‘’]")
_SMART_DOUBLE = re.compile("[“”]")
_NON_ASCII = re.compile(r"[^\x20-\x7E]")


def sanitize(text: str, ascii_only: bool) -> str:
    """Normalize curly quotes; for English papers also strip non-ASCII bytes."""
    text = _SMART_SINGLE.sub("'", text)
    text = _SMART_DOUBLE.sub('"', text)
    if ascii_only:
        text = _NON_ASCII.sub("", text)
    return text


def _is_english(language: Optional[str]) -> bool:
    return (language or "").strip().lower() in ("english", "en")


# ─── Validation ────────────────────────────────────────────────────────────────

def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, str) and value.strip().isdigit()


def parse_question(item: Any, choice_keys: Iterable[str] = CHOICE_KEYS) -> Optional[GeneratedQuestion]:
    """
    Return a GeneratedQuestion if `item` is a well-formed MCQ, else None.

    Valid iff: numeric questionNumber, non-empty question text, choices with
    exactly the required keys and non-empty string values, and a correctAnswer
    that is one of those keys.
    """
    if not isinstance(item, dict):
        return None
    required = set(choice_keys)

    if not _is_number(item.get("questionNumber")):
        return None

    question = item.get("question")
    if not isinstance(question, str) or not question.strip():
        return None

    raw_choices = item.get("choices")
    if not isinstance(raw_choices, dict):
        return None
    choices = {str(k).strip().upper(): v for k, v in raw_choices.items()}
    if set(choices) != required or len(choices) != len(raw_choices):
        return None
    if not all(isinstance(v, str) and v.strip() for v in choices.values()):
        return None

    answer = item.get("correctAnswer")
    if not isinstance(answer, str) or answer.strip().upper() not in required:
        return None

    return GeneratedQuestion(
        question_number=max(1, int(float(item["questionNumber"]))),
        question=question.strip(),
        choices={k: choices[k].strip() for k in sorted(choices)},
        correct_answer=answer.strip().upper(),
    )


# ─── Generator ─────────────────────────────────────────────────────────────────

class QuestionGenerator:
    def __init__(
        self,
        provider: ContentProvider,
        chunk_size: int = QUESTION_CHUNK_SIZE,
        timeout: float = QUESTION_TIMEOUT_SECONDS,
        strict_count: bool = STRICT_QUESTION_COUNT,
        choice_keys: Iterable[str] = CHOICE_KEYS,
        retry_options: Optional[dict] = None,
    ):
        self.provider = provider
        self.chunk_size = max(1, chunk_size)
        self.timeout = timeout
        self.strict_count = strict_count
        self.choice_keys = tuple(choice_keys)
        # attempts / base_delay / max_delay / jitter overrides for call_with_retry
        self.retry_options = retry_options or {}

    @staticmethod
    def validate_spec(spec: PaperSpec) -> None:
        missing = [f for f in REQUIRED_FIELDS if not (getattr(spec, f) or "").strip()]
        if missing:
            raise InvalidRequest(f"The following fields are required: {', '.join(missing)}")
        if spec.count < 1:
            raise InvalidRequest("Number of questions must be a positive integer")

    def chunk_sizes(self, count: int) -> List[int]:
        full, rest = divmod(count, self.chunk_size)
        return [self.chunk_size] * full + ([rest] if rest else [])

    def build_prompt(self, spec: PaperSpec, count: int, first_number: int) -> str:
        choices_block = ",\n".join(
            f'      "{key}": "option {key}"' for key in self.choice_keys
        )
        return MCQ_PROMPT.format(
            count=count,
            subject=spec.subject,
            class_name=spec.class_name,
            syllabus=spec.syllabus,
            chapter_from=spec.chapter_from,
            chapter_to=spec.chapter_to,
            language=spec.language,
            keys_list=", ".join(self.choice_keys),
            first_number=first_number,
            choices_block=choices_block,
            first_key=self.choice_keys[0],
        )

    async def _request_chunk(self, spec: PaperSpec, size: int, first_number: int) -> List[GeneratedQuestion]:
        prompt = self.build_prompt(spec, size, first_number)
        raw = await self.provider.complete(prompt, temperature=0.5, max_tokens=400 * size + 200)
        items = extract_json_array(sanitize(raw, ascii_only=_is_english(spec.language)))

        valid = [q for q in (parse_question(item, self.choice_keys) for item in items) if q is not None]
        dropped = len(items) - len(valid)
        if dropped:
            log.info(f"[GEN] dropped {dropped} invalid question(s) from chunk starting at {first_number}")

        if not valid:
            raise ValueError("No valid questions generated")
        if len(valid) != size:
            if self.strict_count:
                raise IncompleteGeneration(expected=size, got=len(valid))
            valid = valid[:size]
        return valid

    async def generate(self, spec: PaperSpec) -> List[GeneratedQuestion]:
        """
        Generate `spec.count` questions numbered 1..N.

        Raises:
            InvalidRequest:   a required field is missing or count < 1
            GenerationFailed: a chunk failed on every attempt; under the strict
                              count policy its cause is IncompleteGeneration
        """
        self.validate_spec(spec)
        sizes = self.chunk_sizes(spec.count)
        log.info(f"[GEN] {spec.count} question(s) for {spec.subject} class {spec.class_name} in {len(sizes)} chunk(s)")

        collected: List[GeneratedQuestion] = []
        first_number = 1
        for index, size in enumerate(sizes, start=1):
            chunk = await call_with_retry(
                lambda size=size, first_number=first_number: self._request_chunk(spec, size, first_number),
                timeout=self.timeout,
                label=f"question chunk {index}/{len(sizes)}",
                **self.retry_options,
            )
            log.info(f"[GEN] chunk {index}/{len(sizes)}: {len(chunk)} question(s)")
            collected.extend(chunk)
            first_number += size

        # Provider numbering is scaffolding; arrival order is authoritative
        return [
            q.model_copy(update={"question_number": number})
            for number, q in enumerate(collected, start=1)
        ]

