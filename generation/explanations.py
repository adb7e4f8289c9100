"""
Explanation generation

Builds the explanation prompt for one question (or the whole paper when no
question number is given), calls GPT under timeout + retry, and parses the
single JSON object answer:

  {"explanation": str, "references": {"videos": [], "articles": [], "books": []}}

A response missing the explanation text is treated like any other provider
failure and retried.
"""

import json
import logging
import os
from typing import List, Optional

from generation.gpt_client import ContentProvider, call_with_retry, extract_json_obj
from generation.schemas import ExplanationResult, References

log = logging.getLogger("generation.pipeline")

EXPLANATION_TIMEOUT_SECONDS = float(os.getenv("EXPLANATION_TIMEOUT_SECONDS", "45"))


QUESTION_PROMPT = """You are an expert {subject} teacher for class {class_name} ({syllabus} syllabus, chapters {chapter_from} to {chapter_to}).

Explain the following multiple-choice question to a student in {language}.

QUESTION {question_number}: {question}
OPTIONS:
{options}
CORRECT ANSWER: {correct_answer}

Explain why the correct answer is right and why each other option is wrong.
Then suggest study references.

OUTPUT FORMAT: respond with ONLY a valid JSON object, no markdown:
{{
  "explanation": "<step-by-step explanation>",
  "references": {{
    "videos": ["<video title or URL>"],
    "articles": ["<article title or URL>"],
    "books": ["<book title and chapter>"]
  }}
}}"""


PAPER_PROMPT = """You are an expert {subject} teacher for class {class_name} ({syllabus} syllabus, chapters {chapter_from} to {chapter_to}).

Below is a {count}-question multiple-choice paper. Write one overall explanation in {language}
covering the key concepts the paper tests and how to approach each question.

PAPER:
{paper}

OUTPUT FORMAT: respond with ONLY a valid JSON object, no markdown:
{{
  "explanation": "<overall explanation>",
  "references": {{
    "videos": ["<video title or URL>"],
    "articles": ["<article title or URL>"],
    "books": ["<book title and chapter>"]
  }}
}}"""


def _format_options(choices: dict) -> str:
    return "\n".join(f"  {key}: {text}" for key, text in sorted((choices or {}).items()))


def _string_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def build_prompt(paper, question: Optional[dict]) -> str:
    """`paper` is a Paper row; `question` a stored question dict or None for whole-paper."""
    context = dict(
        subject=paper.subject,
        class_name=paper.class_name,
        syllabus=paper.syllabus,
        chapter_from=paper.chapter_from,
        chapter_to=paper.chapter_to,
        language=paper.language or "English",
    )
    if question is not None:
        return QUESTION_PROMPT.format(
            question_number=question.get("questionNumber"),
            question=question.get("question", ""),
            options=_format_options(question.get("choices")),
            correct_answer=question.get("correctAnswer", ""),
            **context,
        )
    questions = paper.questions or []
    return PAPER_PROMPT.format(
        count=len(questions),
        paper=json.dumps(questions, ensure_ascii=False, indent=1),
        **context,
    )


def parse_explanation(raw: str) -> ExplanationResult:
    data = extract_json_obj(raw)
    explanation = data.get("explanation")
    if not isinstance(explanation, str) or not explanation.strip():
        raise ValueError("Response is missing the explanation text")
    refs = data.get("references")
    if not isinstance(refs, dict):
        raise ValueError("Response is missing the references object")
    return ExplanationResult(
        explanation=explanation.strip(),
        references=References(
            videos=_string_list(refs.get("videos")),
            articles=_string_list(refs.get("articles")),
            books=_string_list(refs.get("books")),
        ),
    )


class ExplanationGenerator:
    def __init__(
        self,
        provider: ContentProvider,
        timeout: float = EXPLANATION_TIMEOUT_SECONDS,
        retry_options: Optional[dict] = None,
    ):
        self.provider = provider
        self.timeout = timeout
        self.retry_options = retry_options or {}

    async def _request(self, prompt: str) -> ExplanationResult:
        raw = await self.provider.complete(prompt, temperature=0.3, max_tokens=1500)
        return parse_explanation(raw)

    async def explain(self, paper, question: Optional[dict]) -> ExplanationResult:
        prompt = build_prompt(paper, question)
        number = question.get("questionNumber") if question else 0
        log.info(f"[EXPLAIN] paper={paper.id} q={number}: calling provider")
        return await call_with_retry(
            lambda: self._request(prompt),
            timeout=self.timeout,
            label=f"explanation paper={paper.id} q={number}",
            **self.retry_options,
        )
