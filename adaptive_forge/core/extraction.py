"""
Artifact extraction and structural self-check.

The completion service does not guarantee structured output, so the artifact
is pulled out of the raw text in three tiers: a fenced block tagged with the
artifact language, then any fenced block, then the whole response.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple


class ExtractionSource(Enum):
    """Which extraction tier produced the artifact."""
    TAGGED_BLOCK = "tagged_block"
    GENERIC_BLOCK = "generic_block"
    RAW = "raw"


_GENERIC_BLOCK = re.compile(r"```[^\n`]*\n(.*?)\n?```", re.DOTALL)


def _tagged_block_pattern(language: str) -> "re.Pattern[str]":
    return re.compile(
        r"```[ \t]*" + re.escape(language) + r"[ \t]*\n(.*?)\n?```",
        re.DOTALL | re.IGNORECASE,
    )


def extract_artifact_with_source(text: str, language: str = "html") -> Tuple[str, ExtractionSource]:
    """Extract the artifact and report which tier matched."""
    tagged = _tagged_block_pattern(language).search(text)
    if tagged:
        return tagged.group(1).strip(), ExtractionSource.TAGGED_BLOCK

    generic = _GENERIC_BLOCK.search(text)
    if generic:
        return generic.group(1).strip(), ExtractionSource.GENERIC_BLOCK

    return text.strip(), ExtractionSource.RAW


def extract_artifact(text: str, language: str = "html") -> str:
    """Extract the artifact from a raw completion.

    Args:
        text: Raw completion text
        language: Fence tag of the expected artifact

    Returns:
        Artifact text, stripped of surrounding whitespace
    """
    artifact, _ = extract_artifact_with_source(text, language)
    return artifact


@dataclass(frozen=True)
class MarkerRule:
    """A substring check with the message reported when it fails."""
    marker: str
    message: str


@dataclass(frozen=True)
class ShapeContract:
    """Minimal required shape of a generated artifact.

    Required markers must all be present and forbidden markers must all be
    absent; either violation is an error. Warning rules never fail the check.
    """
    required: Tuple[MarkerRule, ...] = field(default_factory=tuple)
    forbidden: Tuple[MarkerRule, ...] = field(default_factory=tuple)
    discouraged: Tuple[MarkerRule, ...] = field(default_factory=tuple)
    html_hints: bool = False  # warn on <html> classes and uninitialised Lucide icons

    @classmethod
    def from_markers(cls, required=(), forbidden=(), discouraged=()) -> "ShapeContract":
        """Build a contract from bare marker strings."""
        return cls(
            required=tuple(MarkerRule(m, f"Missing required marker: {m}") for m in required),
            forbidden=tuple(MarkerRule(m, f"Contains forbidden marker: {m}") for m in forbidden),
            discouraged=tuple(MarkerRule(m, f"Contains discouraged marker: {m}") for m in discouraged),
        )


@dataclass(frozen=True)
class ShapeCheckResult:
    """Outcome of the structural self-check."""
    is_valid: bool
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()


DIAGRAM_SHAPE_CONTRACT = ShapeContract(
    required=(
        MarkerRule("cdn.tailwindcss.com", "Missing required Tailwind CSS CDN script"),
        MarkerRule("unpkg.com/lucide", "Missing required Lucide icons script"),
        MarkerRule("<html", "Missing <html> tag"),
        MarkerRule("<head", "Missing <head> tag"),
        MarkerRule("<body", "Missing <body> tag"),
    ),
    forbidden=(
        MarkerRule("<style>", "Contains forbidden <style> tag - use inline styles only"),
        MarkerRule("<style ", "Contains forbidden <style> tag - use inline styles only"),
        MarkerRule('<link rel="stylesheet"', "Contains forbidden <link> stylesheet - use Tailwind CDN only"),
    ),
    html_hints=True,
)

_HTML_TAG_CLASS = re.compile(r"<html[^>]*class=", re.IGNORECASE)


def check_artifact_shape(artifact: str, contract: ShapeContract = DIAGRAM_SHAPE_CONTRACT) -> ShapeCheckResult:
    """Run the cheap structural self-check on an artifact.

    Args:
        artifact: Extracted artifact text
        contract: Required/forbidden markers to enforce

    Returns:
        ShapeCheckResult with de-duplicated errors and warnings
    """
    errors: List[str] = []
    warnings: List[str] = []

    for rule in contract.required:
        if rule.marker not in artifact and rule.message not in errors:
            errors.append(rule.message)

    for rule in contract.forbidden:
        if rule.marker in artifact and rule.message not in errors:
            errors.append(rule.message)

    for rule in contract.discouraged:
        if rule.marker in artifact and rule.message not in warnings:
            warnings.append(rule.message)

    if contract.html_hints:
        warnings.extend(_diagram_warnings(artifact))

    return ShapeCheckResult(
        is_valid=not errors,
        errors=tuple(errors),
        warnings=tuple(warnings),
    )


def _diagram_warnings(artifact: str) -> List[str]:
    warnings = []
    if _HTML_TAG_CLASS.search(artifact):
        warnings.append("Tailwind classes found in <html> tag - should use <body> instead")
    if "lucide" in artifact and "lucide.createIcons()" not in artifact:
        warnings.append("Lucide icons used but createIcons() not called")
    return warnings
