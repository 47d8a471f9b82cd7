import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from livepoll.core.errors import GeneratorError
from livepoll.schemas.live_session import GeneratedPoll

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE)
_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_QUESTION_FIELD_RE = re.compile(r'question"?\s*:\s*"([^"]+)"')
_OPTIONS_FIELD_RE = re.compile(r'options"?\s*:\s*\[(.*?)\]', re.DOTALL)
_QUESTION_PREFIX_RE = re.compile(r"^(question:|q:)?\s*", re.IGNORECASE)
_OPTION_LINE_RE = re.compile(r"^\s*([A-Da-d])[.)]\s*(.+)$")


def _as_text(value: Any) -> str:
    return str(value or "").strip()


def _clean(text: str) -> str:
    body = _THINK_RE.sub(" ", text or "").strip()
    block = _CODE_BLOCK_RE.search(body)
    if block:
        return block.group(1).strip()
    return body


def _from_json(body: str) -> Optional[Dict[str, Any]]:
    candidates = [body]
    match = _JSON_OBJECT_RE.search(body)
    if match:
        candidates.append(match.group(0))
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except (TypeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _from_fields(body: str) -> Optional[Dict[str, Any]]:
    question = _QUESTION_FIELD_RE.search(body)
    options = _OPTIONS_FIELD_RE.search(body)
    if not question or not options:
        return None
    labels = [opt.strip().strip('"').strip() for opt in options.group(1).split(",")]
    return {"question": question.group(1), "options": labels}


def _from_lines(body: str) -> Optional[Dict[str, Any]]:
    # Question: What is X?
    # A. first
    # B. second
    lines = [line.strip() for line in body.splitlines() if line.strip()]
    if not lines:
        return None
    question = _QUESTION_PREFIX_RE.sub("", lines[0]).strip()
    options: List[str] = []
    for line in lines[1:]:
        match = _OPTION_LINE_RE.match(line)
        if match:
            options.append(match.group(2).strip())
    return {"question": question, "options": options}


def parse_poll_completion(text: str) -> GeneratedPoll:
    """Turn a model completion into a question plus at least two options.

    Tries strict JSON first (code fences tolerated), then field regexes, then
    the `Question:` / `A.`..`D.` line convention.
    """
    body = _clean(text)
    if not body:
        raise GeneratorError("empty completion")

    for strategy in (_from_json, _from_fields, _from_lines):
        parsed = strategy(body)
        if not parsed:
            continue
        question = _as_text(parsed.get("question"))
        raw_options = parsed.get("options")
        if not isinstance(raw_options, list):
            continue
        options = [_as_text(opt) for opt in raw_options if _as_text(opt)]
        if not question or len(options) < 2:
            continue
        try:
            return GeneratedPoll(question=question, options=options)
        except PydanticValidationError:
            continue

    logger.warning("poll_completion_unparseable preview=%s", body[:120])
    raise GeneratorError("completion did not contain a question with at least 2 options")
