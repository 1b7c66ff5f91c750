"""
codemark/services/scoring.py
Turns provider metrics into a 0-100 score with category sub-scores
"""
from typing import Dict, Any, Optional

# Category ceilings; they add up to 100
CATEGORY_MAX = {
    "correctness": 30,
    "security": 20,
    "maintainability": 20,
    "documentation": 15,
    "clean_code": 10,
    "simplicity": 5,
}

CATEGORY_LABELS = {
    "correctness": "Correctness",
    "security": "Security",
    "maintainability": "Maintainability",
    "documentation": "Documentation",
    "clean_code": "Clean Code",
    "simplicity": "Simplicity",
}

METRIC_KEYS = (
    "bugs",
    "vulnerabilities",
    "code_smells",
    "coverage",
    "duplicated_lines_density",
    "reliability_rating",
    "security_rating",
    "sqale_rating",
    "complexity",
    "ncloc",
    "comment_lines_density",
)

DEFAULT_RATING = 3.0


def _number(metrics: Dict[str, Any], key: str, default: float = 0.0) -> float:
    value = metrics.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def normalize_metrics(metrics: Optional[Dict[str, Any]]) -> Dict[str, float]:
    """Keep the known metric keys as floats; providers often send strings."""
    metrics = metrics or {}
    return {key: _number(metrics, key) for key in METRIC_KEYS if key in metrics}


def _rating_factor(metrics: Dict[str, Any], key: str) -> float:
    # Ratings run 1 (best) to 5 (worst)
    rating = min(5.0, max(1.0, _number(metrics, key, DEFAULT_RATING)))
    return (6 - rating) / 5


def _documentation_score(comment_density: float) -> int:
    if comment_density <= 40:
        return round(comment_density / 40 * 15)
    return round(max(0.0, 15 - (comment_density - 40) / 20 * 5))


def calculate_score(metrics: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Score a set of provider metrics.

    Returns a dict with `score` (0-100), `category_scores` keyed like
    CATEGORY_MAX and `raw_metrics` (the normalized input).
    """
    raw = normalize_metrics(metrics)

    bugs = raw.get("bugs", 0.0)
    vulnerabilities = raw.get("vulnerabilities", 0.0)
    code_smells = raw.get("code_smells", 0.0)
    duplication = raw.get("duplicated_lines_density", 0.0)
    complexity = raw.get("complexity", 0.0)
    ncloc = raw.get("ncloc", 0.0)
    comment_density = raw.get("comment_lines_density", 0.0)

    complexity_ratio = complexity / ncloc if ncloc > 0 else 0.0

    category_scores = {
        "correctness": round(max(0.0, 30 - bugs * 5) * _rating_factor(raw, "reliability_rating")),
        "security": round(max(0.0, 20 - vulnerabilities * 7) * _rating_factor(raw, "security_rating")),
        "maintainability": round(max(0.0, 20 - code_smells * 0.8) * _rating_factor(raw, "sqale_rating")),
        "documentation": _documentation_score(comment_density),
        "clean_code": round(max(0.0, 10 - duplication * 0.5)),
        "simplicity": round(max(0.0, 5 - complexity_ratio * 50)),
    }
    category_scores = {
        key: min(CATEGORY_MAX[key], max(0, int(value)))
        for key, value in category_scores.items()
    }

    score = max(0, min(100, sum(category_scores.values())))

    return {
        "score": score,
        "category_scores": category_scores,
        "raw_metrics": raw,
    }


def build_feedback(scored: Dict[str, Any], source: str) -> str:
    """Human-readable summary stored alongside the result."""
    breakdown = ", ".join(
        f"{CATEGORY_LABELS[key]}: {scored['category_scores'][key]}"
        for key in CATEGORY_MAX
    )
    return (
        f"Analysis completed using {source}. "
        f"Overall score: {scored['score']}/100. "
        f"Score breakdown: {breakdown}"
    )
