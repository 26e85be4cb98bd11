"""
Prompt -> backend selection.

A static table of use cases (keywords, preferred backends, fallback
backends, base confidence) is turned into a keyword reverse index once.
Classification is a pure function of that table and the prompt.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UseCase:
    label: str
    keywords: Tuple[str, ...]
    preferred: Tuple[str, ...]
    fallback: Tuple[str, ...]
    confidence: float


# Iteration order is the tie-break order: on equal scores the earlier entry wins.
USE_CASES: Tuple[UseCase, ...] = (
    UseCase(
        "vector-design",
        ("vector", "svg", "scalable", "print-ready", "vector art", "vector illustration"),
        ("RECRAFT",),
        ("IDEOGRAM", "OPENAI"),
        0.95,
    ),
    UseCase("logo", ("logo", "wordmark", "text", "with text"), ("RECRAFT", "IDEOGRAM"), ("OPENAI", "LEONARDO"), 0.95),
    UseCase(
        "branding",
        ("brand", "icon", "symbol", "emblem", "badge", "branding", "brand identity"),
        ("RECRAFT", "IDEOGRAM"),
        ("OPENAI", "LEONARDO"),
        0.9,
    ),
    UseCase(
        "text-heavy",
        (
            "text", "poster", "banner", "sign", "quote", "typography", "lettering",
            "flyer", "advertisement", "text layout", "perfect text",
        ),
        ("RECRAFT", "IDEOGRAM"),
        ("OPENAI", "GEMINI"),
        0.95,
    ),
    UseCase(
        "graphic-design",
        ("graphic design", "marketing material", "packaging", "print design", "professional design"),
        ("RECRAFT", "IDEOGRAM"),
        ("OPENAI", "LEONARDO"),
        0.9,
    ),
    UseCase(
        "photorealistic",
        ("realistic", "photo", "photography", "real", "lifelike", "portrait", "headshot", "professional"),
        ("BFL", "STABILITY"),
        ("GEMINI", "OPENAI"),
        0.85,
    ),
    UseCase(
        "artistic",
        ("art", "painting", "illustration", "creative", "abstract", "surreal", "imaginative", "artistic"),
        ("LEONARDO", "STABILITY"),
        ("BFL", "REPLICATE"),
        0.85,
    ),
    UseCase(
        "fantasy",
        ("fantasy", "magical", "mythical", "dragon", "wizard", "medieval", "enchanted", "mystical", "rpg"),
        ("LEONARDO", "STABILITY"),
        ("BFL", "REPLICATE"),
        0.9,
    ),
    UseCase(
        "cinematic",
        ("cinematic", "dramatic", "epic", "movie", "film", "scene", "atmospheric", "moody"),
        ("LEONARDO", "BFL"),
        ("STABILITY", "OPENAI"),
        0.85,
    ),
    UseCase(
        "game-asset",
        ("game", "asset", "sprite", "texture", "character design", "concept art", "gaming", "video game"),
        ("LEONARDO", "STABILITY"),
        ("FAL", "BFL"),
        0.85,
    ),
    UseCase(
        "ui-design",
        ("ui", "ux", "interface", "app", "website", "dashboard", "mockup", "wireframe", "design"),
        ("OPENAI", "IDEOGRAM"),
        ("STABILITY", "LEONARDO"),
        0.85,
    ),
    UseCase(
        "product",
        ("product", "ecommerce", "catalog", "item", "merchandise", "packaging"),
        ("BFL", "STABILITY"),
        ("OPENAI", "GEMINI"),
        0.8,
    ),
    UseCase(
        "social-media",
        ("instagram", "tiktok", "youtube", "thumbnail", "story", "post", "reel", "viral", "social"),
        ("LEONARDO", "IDEOGRAM"),
        ("BFL", "FAL"),
        0.8,
    ),
    UseCase(
        "technical",
        ("diagram", "chart", "graph", "flowchart", "architecture", "schematic", "blueprint"),
        ("OPENAI", "GEMINI"),
        ("IDEOGRAM", "STABILITY"),
        0.8,
    ),
    UseCase(
        "3d-render",
        ("3d", "render", "cgi", "three dimensional", "model", "sculpture"),
        ("STABILITY", "BFL"),
        ("OPENAI", "LEONARDO"),
        0.85,
    ),
    UseCase(
        "anime",
        ("anime", "manga", "kawaii", "chibi", "japanese", "otaku"),
        ("LEONARDO", "STABILITY"),
        ("REPLICATE", "FAL"),
        0.9,
    ),
    UseCase(
        "carousel",
        ("carousel", "series", "consistent", "multiple", "sequence", "slides"),
        ("LEONARDO",),
        ("IDEOGRAM", "STABILITY"),
        0.95,
    ),
    UseCase(
        "quick-draft",
        ("quick", "draft", "fast", "rapid", "speed", "instant"),
        ("FAL",),
        ("OPENAI", "GEMINI"),
        0.9,
    ),
    UseCase(
        "post-process",
        ("remove background", "transparent", "upscale", "enhance", "cleanup", "edit"),
        ("CLIPDROP",),
        ("STABILITY", "OPENAI"),
        0.95,
    ),
    UseCase(
        "infographic",
        ("infographic", "data", "visualization", "stats", "chart", "graph", "information"),
        ("IDEOGRAM", "OPENAI"),
        ("GEMINI", "STABILITY"),
        0.85,
    ),
    UseCase(
        "multi-image",
        ("combine", "multiple images", "composite", "merge", "collage", "blend images", "mix images"),
        ("GEMINI",),
        ("OPENAI", "LEONARDO"),
        0.9,
    ),
)

QUALITY_KEYWORDS = ("high quality", "professional", "4k")
QUALITY_BACKENDS = ("BFL", "STABILITY", "OPENAI")
SPEED_KEYWORDS = ("quick", "fast", "draft")
SPEED_BACKENDS = ("FAL", "GEMINI", "OPENAI")
DEFAULT_ORDER = ("GEMINI", "OPENAI", "STABILITY", "BFL", "LEONARDO", "IDEOGRAM", "FAL", "REPLICATE")

GENERIC_PRIMARY = ("GEMINI", "OPENAI", "STABILITY")
GENERIC_SECONDARY = ("BFL", "LEONARDO", "IDEOGRAM", "FAL")


class Classification(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    use_case: str
    confidence: float
    score: int
    matched_keywords: int


@dataclass(frozen=True)
class Recommendation:
    primary: Tuple[str, ...]
    secondary: Tuple[str, ...]
    reason: str
    use_case: Optional[str] = None
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "primary": list(self.primary),
            "secondary": list(self.secondary),
            "reason": self.reason,
            "use_case": self.use_case,
            "confidence": self.confidence,
        }


@dataclass
class BackendSelector:
    use_cases: Sequence[UseCase] = USE_CASES
    _by_label: Dict[str, UseCase] = field(default_factory=dict, init=False, repr=False)
    _index: Dict[str, Set[str]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        for uc in self.use_cases:
            self._by_label[uc.label] = uc
            for kw in uc.keywords:
                self._index.setdefault(kw, set()).add(uc.label)

    def classify(self, prompt: str) -> Optional[Classification]:
        if not prompt or not prompt.strip():
            return None
        lower = prompt.lower()
        scores: Dict[str, List[int]] = {}
        for kw, labels in self._index.items():
            if kw in lower:
                weight = len(kw) * len(kw.split(" "))
                for label in labels:
                    s = scores.setdefault(label, [0, 0])
                    s[0] += weight
                    s[1] += 1

        best: Optional[Classification] = None
        for uc in self.use_cases:
            if uc.label not in scores:
                continue
            score, matched = scores[uc.label]
            if best is None or score > best.score:
                best = Classification(
                    use_case=uc.label,
                    confidence=uc.confidence * (0.5 + 0.5 * matched / len(uc.keywords)),
                    score=score,
                    matched_keywords=matched,
                )
        if best is not None:
            logger.debug("classified prompt as %s (confidence %.2f)", best.use_case, best.confidence)
        return best

    def select(self, prompt: str, available: Sequence[str], explicit: Optional[str] = None) -> Optional[str]:
        """Best available backend for the prompt, or None when nothing is available."""
        pool = [str(a).upper() for a in available]
        if not pool:
            return None
        if explicit and explicit.lower() != "auto":
            if explicit.upper() in pool:
                logger.info("using explicitly requested backend %s", explicit.upper())
                return explicit.upper()
            logger.warning("requested backend %s not available, using automatic selection", explicit)

        found = self.classify(prompt)
        if found is not None:
            uc = self._by_label[found.use_case]
            for name in uc.preferred + uc.fallback:
                if name in pool:
                    logger.info("selected %s for %s (confidence %.2f)", name, uc.label, found.confidence)
                    return name

        lower = str(prompt or "").lower()
        if any(k in lower for k in QUALITY_KEYWORDS):
            pick = _first_in(QUALITY_BACKENDS, pool)
            if pick:
                return pick
        if any(k in lower for k in SPEED_KEYWORDS):
            pick = _first_in(SPEED_BACKENDS, pool)
            if pick:
                return pick
        return _first_in(DEFAULT_ORDER, pool) or pool[0]

    def recommend(self, prompt: str) -> Recommendation:
        found = self.classify(prompt)
        if found is None:
            return Recommendation(
                primary=GENERIC_PRIMARY,
                secondary=GENERIC_SECONDARY,
                reason="No specific use case detected - using versatile general-purpose backends",
            )
        uc = self._by_label[found.use_case]
        return Recommendation(
            primary=uc.preferred,
            secondary=uc.fallback,
            reason=f"Detected {uc.label} use case with {found.confidence * 100:.0f}% confidence",
            use_case=uc.label,
            confidence=found.confidence,
        )


def _first_in(order: Sequence[str], pool: Sequence[str]) -> Optional[str]:
    for name in order:
        if name in pool:
            return name
    return None
