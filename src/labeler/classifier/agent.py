"""LLM-based label classifier.

This module implements the LLMLabelClassifier, which asks a language model
to score an issue or pull request against a fixed list of candidate labels.
It connects to an OpenAI-compatible endpoint (for example vLLM) through
LangChain's ChatOpenAI client.

The model is asked for JSON of the form
{"scores": [{"label": "area-System.Net", "score": 0.87}, ...]}. Labels the
model invents are discarded, scores are clamped to [0, 1], and any failure
yields an empty score list so the caller treats it as "no prediction".

Source:
- src/labeler/classifier/base.py (LabelClassifier)
- src/labeler/decision/models.py (LabelScore)
- src/labeler/config.py (llm_url, llm_model, candidate_labels)
"""

import json
import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Union

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from src.labeler.classifier.base import LabelClassifier
from src.labeler.decision.models import LabelScore
from src.labeler.github.models import Issue, PullRequest


logger = logging.getLogger(__name__)


MAX_BODY_CHARS = 4000
MAX_FILES_IN_PROMPT = 50


CLASSIFICATION_SYSTEM_PROMPT = """You are an expert at triaging GitHub issues and pull requests. Your task is to decide which area label best describes an item.

You MUST respond with valid JSON only. Do not include any text before or after the JSON object.

You will be given the list of candidate labels and the item. Score every candidate label you consider plausible with a confidence between 0.0 and 1.0. Only use labels from the candidate list.

Respond with this exact JSON structure:
{
  "scores": [
    {"label": "candidate label", "score": 0.0-1.0}
  ]
}"""


def _build_classification_prompt(
    record: Union[Issue, PullRequest],
    candidate_labels: Sequence[str],
) -> str:
    """Build the user prompt for label classification.

    Args:
        record: The issue or pull request.
        candidate_labels: Labels the model may choose from.

    Returns:
        Formatted prompt string for the LLM.
    """
    body = record.body[:MAX_BODY_CHARS] if record.body else "(no description provided)"
    labels_str = "\n".join(f"- {label}" for label in candidate_labels)

    prompt = f"""Candidate labels:
{labels_str}

Classify this GitHub {record.kind.display_name.lower()}:

**Title:** {record.title}

**Author:** {record.author}

**Description:**
{body}
"""

    # Rows read back from training data carry file names but no paths
    changed = record.file_paths or record.file_names if isinstance(record, PullRequest) else ()
    if changed:
        files = "\n".join(f"- {path}" for path in changed[:MAX_FILES_IN_PROMPT])
        folders = ", ".join(record.folder_names) or "(root)"
        prompt += f"""
**Changed files:**
{files}

**Folders:** {folders}
"""

    return prompt + "\nProvide your scores as JSON."


def _parse_llm_response(response_text: str) -> Dict[str, Any]:
    """Parse the LLM response text into a dictionary.

    Handles common LLM response quirks like markdown code blocks.

    Raises:
        json.JSONDecodeError: If the response is not valid JSON.
    """
    text = response_text.strip()

    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]

    if text.endswith("```"):
        text = text[:-3]

    return json.loads(text.strip())


def _normalize_scores(
    data: Dict[str, Any],
    candidate_labels: Sequence[str],
) -> List[LabelScore]:
    """Validate and normalize the parsed scores.

    Unknown labels and non-numeric scores are dropped, label names are
    mapped back to their canonical spelling, scores are clamped to [0, 1],
    and a label scored twice keeps its highest score.

    Raises:
        ValueError: If the response has no "scores" list.
    """
    entries = data.get("scores")
    if not isinstance(entries, list):
        raise ValueError("Response does not contain a 'scores' list")

    canonical = {label.lower(): label for label in candidate_labels}
    best: Dict[str, float] = {}

    for entry in entries:
        if not isinstance(entry, dict):
            continue

        label = canonical.get(str(entry.get("label", "")).strip().lower())
        if label is None:
            logger.debug(
                "Discarding score for unknown label",
                extra={"received_label": entry.get("label")},
            )
            continue

        try:
            score = float(entry.get("score"))
        except (ValueError, TypeError):
            continue
        if math.isnan(score):
            continue

        score = max(0.0, min(1.0, score))
        if label not in best or score > best[label]:
            best[label] = score

    return [LabelScore(label=label, score=score) for label, score in best.items()]


class ClassificationError(Exception):
    """Raised when label classification fails.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception that caused the failure.
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class LLMLabelClassifier(LabelClassifier):
    """LLM-based classifier scoring records against candidate labels.

    The classifier is stateless between calls and safe to share across
    concurrent tasks.

    Attributes:
        llm_url: URL of the OpenAI-compatible endpoint.
        model_name: Name of the model to use for inference.
        candidate_labels: Labels the model may choose from.
        timeout: Request timeout in seconds.
        temperature: Sampling temperature for the LLM.

    Example:
        >>> classifier = LLMLabelClassifier(
        ...     llm_url="http://localhost:8000/v1",
        ...     model_name="Qwen/Qwen2.5-Coder-14B-Instruct-GPTQ-Int4",
        ...     candidate_labels=["area-System.Net", "area-System.IO"],
        ... )
        >>> scores = await classifier.predict(issue)
    """

    def __init__(
        self,
        llm_url: str,
        model_name: str,
        candidate_labels: Sequence[str],
        timeout: float = 30.0,
        temperature: float = 0.1,
        api_key: Optional[str] = None,
    ):
        """Initialize the label classifier.

        Args:
            llm_url: URL of the endpoint (e.g., http://localhost:8000/v1).
            model_name: Name of the model to use for inference.
            candidate_labels: Labels the model may choose from.
            timeout: Request timeout in seconds.
            temperature: Sampling temperature (lower = more deterministic).
            api_key: API key for hosted endpoints. Local endpoints need none.

        Raises:
            ValueError: If no candidate labels are given.
        """
        if not candidate_labels:
            raise ValueError("At least one candidate label is required")

        self.llm_url = llm_url
        self.model_name = model_name
        self.candidate_labels = list(candidate_labels)
        self.timeout = timeout
        self.temperature = temperature
        self.api_key = api_key
        self._llm: Optional[ChatOpenAI] = None

    @property
    def llm(self) -> ChatOpenAI:
        """Get the LLM client, creating it if necessary."""
        if self._llm is None:
            self._llm = ChatOpenAI(
                base_url=self.llm_url,
                model=self.model_name,
                temperature=self.temperature,
                timeout=self.timeout,
                api_key=self.api_key or "not-needed",
            )
        return self._llm

    async def predict(self, record: Union[Issue, PullRequest]) -> List[LabelScore]:
        """Score a record with the LLM.

        Returns:
            Label scores, or an empty list if classification failed.
        """
        logger.debug(
            "Classifying %s %s",
            record.kind.display_name,
            record.item_id,
            extra={
                "number": record.number,
                "title": record.title[:100],
                "body_length": len(record.body),
            },
        )

        try:
            scores = await self._perform_classification(record)
        except Exception as e:
            logger.error(
                "Label classification failed for %s",
                record.item_id,
                extra={
                    "number": record.number,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return []

        logger.debug(
            "Classified %s with %d scores",
            record.item_id,
            len(scores),
            extra={"number": record.number, "scores_count": len(scores)},
        )
        return scores

    async def _perform_classification(
        self,
        record: Union[Issue, PullRequest],
    ) -> List[LabelScore]:
        """Perform the actual LLM classification.

        Raises:
            ClassificationError: If the LLM call or parsing fails.
        """
        messages = [
            SystemMessage(content=CLASSIFICATION_SYSTEM_PROMPT),
            HumanMessage(
                content=_build_classification_prompt(record, self.candidate_labels)
            ),
        ]

        try:
            response = await self.llm.ainvoke(messages)
            response_text = response.content
        except Exception as e:
            raise ClassificationError(f"LLM invocation failed: {e}", cause=e)

        if not isinstance(response_text, str):
            raise ClassificationError(
                f"Unexpected response type: {type(response_text)}"
            )

        try:
            parsed_data = _parse_llm_response(response_text)
        except json.JSONDecodeError as e:
            logger.warning(
                "Failed to parse LLM response as JSON",
                extra={
                    "response_preview": response_text[:200],
                    "error": str(e),
                },
            )
            raise ClassificationError(f"Invalid JSON response: {e}", cause=e)

        if not isinstance(parsed_data, dict):
            raise ClassificationError("LLM response is not a JSON object")

        try:
            return _normalize_scores(parsed_data, self.candidate_labels)
        except ValueError as e:
            raise ClassificationError(f"Response validation failed: {e}", cause=e)
