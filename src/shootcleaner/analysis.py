"""Culling analysis results: parsing assistant verdicts into typed records."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from shootcleaner.compiler import compile_recommendations
from shootcleaner.engine import EnhancementJob, build_job_id
from shootcleaner.instructions import Instruction, to_dict

logger = logging.getLogger(__name__)

DECISIONS = {"keep", "reject", "review"}
EDITING_INTENSITIES = {"subtle", "moderate", "dramatic"}
COLOR_GRADINGS = {"natural", "warm", "cool", "vintage", "cinematic"}


@dataclass(frozen=True)
class StyleProfile:
    """The photographer's preferences passed to the culling assistant."""

    editing_intensity: str = "moderate"
    color_grading: str = "natural"
    reject_criteria: tuple[str, ...] = ("blur", "overexposed", "underexposed")
    custom_rules: str = ""

    def __post_init__(self) -> None:
        if self.editing_intensity not in EDITING_INTENSITIES:
            raise ValueError(f"Invalid editing intensity: {self.editing_intensity}")
        if self.color_grading not in COLOR_GRADINGS:
            raise ValueError(f"Invalid color grading: {self.color_grading}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "editing_intensity": self.editing_intensity,
            "color_grading": self.color_grading,
            "reject_criteria": list(self.reject_criteria),
            "custom_rules": self.custom_rules,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StyleProfile":
        defaults = cls()
        return cls(
            editing_intensity=data.get("editing_intensity", defaults.editing_intensity),
            color_grading=data.get("color_grading", defaults.color_grading),
            reject_criteria=tuple(
                data.get("reject_criteria", defaults.reject_criteria)
            ),
            custom_rules=data.get("custom_rules", defaults.custom_rules),
        )


def load_style_profile(path: Path) -> StyleProfile:
    """Load a style profile from JSON.

    Raises:
        ValueError: If the file is not valid JSON or holds invalid values
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid style profile {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Style profile must contain a JSON object: {path}")
    return StyleProfile.from_dict(data)


@dataclass
class ImageAnalysis:
    """The assistant's verdict on one image."""

    custom_id: str
    filename: str
    path: str
    decision: str
    confidence: float
    rationale: str
    artistic_score: float | None = None
    badges: list[str] = field(default_factory=list)
    technical_issues: list[str] = field(default_factory=list)
    instructions: list[Instruction] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "custom_id": self.custom_id,
            "filename": self.filename,
            "path": self.path,
            "decision": self.decision,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "artistic_score": self.artistic_score,
            "badges": self.badges,
            "technical_issues": self.technical_issues,
            "instructions": [to_dict(i) for i in self.instructions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImageAnalysis":
        return cls(
            custom_id=data.get("custom_id", "unknown"),
            filename=data.get("filename", "unknown"),
            path=data.get("path", "unknown"),
            decision=normalize_decision(data.get("decision")),
            confidence=normalize_confidence(data.get("confidence")),
            rationale=str(data.get("rationale", "")),
            artistic_score=data.get("artistic_score"),
            badges=list(data.get("badges") or []),
            technical_issues=list(data.get("technical_issues") or []),
            instructions=compile_recommendations(data.get("instructions") or []),
        )


def normalize_decision(value: Any) -> str:
    decision = str(value or "").strip().lower()
    if decision not in DECISIONS:
        logger.warning(f"Unknown decision {value!r}, marking for review")
        return "review"
    return decision


def normalize_confidence(value: Any) -> float:
    """Confidence as 0-1; percentages (0-100) are scaled down."""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence > 1:
        confidence /= 100
    return round(max(0.0, min(1.0, confidence)), 3)


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_analysis(
    result: dict[str, Any], metadata: dict[str, Any] | None = None
) -> ImageAnalysis | None:
    """Parse one batch result into an ``ImageAnalysis``.

    Args:
        result: Normalised batch result (``custom_id`` + ``result``)
        metadata: Image metadata from ``prepare_analysis_batch()``

    Returns:
        The analysis, or None if the request errored or the reply is not JSON
    """
    custom_id = result.get("custom_id", "unknown")
    metadata = metadata or {}

    try:
        if result["result"]["type"] != "succeeded":
            logger.warning(
                f"Result not succeeded: {custom_id} - {result['result']['type']}"
            )
            return None

        text_content = None
        for block in result["result"]["message"]["content"]:
            if block["type"] == "text":
                text_content = block["text"]
                break

        if not text_content:
            logger.warning(f"No text content in result: {custom_id}")
            return None

        verdict = json.loads(_strip_code_fence(text_content))
        if not isinstance(verdict, dict):
            raise ValueError("reply is not a JSON object")

    except (KeyError, TypeError, ValueError) as e:
        logger.error(f"Failed to parse analysis for {custom_id}: {e}")
        return None

    return ImageAnalysis.from_dict(
        {
            **verdict,
            "custom_id": custom_id,
            "filename": metadata.get("filename", verdict.get("filename", "unknown")),
            "path": metadata.get("path", "unknown"),
        }
    )


def merge_analyses(
    batch_results: list[dict[str, Any]], image_metadata: list[dict[str, Any]]
) -> list[ImageAnalysis]:
    """Parse every batch result, matching it to its image by ``custom_id``."""
    metadata_by_id = {item["custom_id"]: item for item in image_metadata}

    analyses = []
    for result in batch_results:
        analysis = parse_analysis(result, metadata_by_id.get(result.get("custom_id")))
        if analysis is None:
            logger.warning(f"Skipping result with no analysis: {result.get('custom_id')}")
            continue
        analyses.append(analysis)

    logger.info(f"Parsed {len(analyses)} analyses")
    return analyses


def summarize_decisions(analyses: list[ImageAnalysis]) -> dict[str, Any]:
    counts = {decision: 0 for decision in ("keep", "reject", "review")}
    for analysis in analyses:
        counts[analysis.decision] += 1
    average = (
        round(sum(a.confidence for a in analyses) / len(analyses), 3)
        if analyses
        else 0.0
    )
    return {"total": len(analyses), **counts, "average_confidence": average}


def jobs_from_analyses(
    analyses: list[ImageAnalysis], decisions: set[str] | None = None
) -> list[EnhancementJob]:
    """One enhancement job per analysed image, using its recommended chain.

    Args:
        analyses: Parsed analyses
        decisions: Only include these decisions (default: keep and review)
    """
    if decisions is None:
        decisions = {"keep", "review"}

    selected = [a for a in analyses if a.decision in decisions]
    return [
        EnhancementJob(
            id=build_job_id(index, Path(analysis.path)),
            source=Path(analysis.path),
            instructions=tuple(analysis.instructions),
        )
        for index, analysis in enumerate(selected)
    ]


def save_analyses(analyses: list[ImageAnalysis], path: Path) -> None:
    data = {
        "summary": summarize_decisions(analyses),
        "images": [analysis.to_dict() for analysis in analyses],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    logger.info(f"Analysis written to: {path}")


def load_analyses(path: Path) -> list[ImageAnalysis]:
    """Load analyses saved by ``save_analyses``.

    Raises:
        ValueError: If the file is not a saved analysis
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid analysis file {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("images"), list):
        raise ValueError(f"Not an analysis file: {path}")

    return [ImageAnalysis.from_dict(item) for item in data["images"]]
