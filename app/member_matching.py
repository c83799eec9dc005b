"""
Family member matching for assistant drafts, with fuzzy name matching.
The model is asked for member ids but often answers with names or
misspellings ("erik", "Erick" -> "Erik").
"""
import re
from difflib import SequenceMatcher
from typing import Any, Dict, List, Optional, Tuple

from app.logger import get_logger

logger = get_logger(__name__)

UNASSIGNED_VALUES = {'unassigned', 'none', 'null', 'n/a', 'nobody', 'anyone', ''}


def normalize_name(name: str) -> str:
    """
    Normalize a name for comparison: lowercase, punctuation to spaces,
    collapsed whitespace. Letters outside ASCII (Cyrillic names) are kept.
    """
    if not name:
        return ""

    normalized = name.lower().strip()
    normalized = re.sub(r'[.,;:\-_/\\]+', ' ', normalized)
    normalized = re.sub(r'[^\w\s]', '', normalized)
    normalized = re.sub(r'\s+', ' ', normalized)

    return normalized.strip()


def calculate_similarity(name1: str, name2: str) -> float:
    """
    Calculate similarity between two names using multiple strategies.

    Returns:
        Similarity score between 0.0 and 1.0
    """
    n1 = normalize_name(name1)
    n2 = normalize_name(name2)

    if not n1 or not n2:
        return 0.0

    if n1 == n2:
        return 1.0

    # "erik" vs "erik smith"
    parts1 = set(n1.split())
    parts2 = set(n2.split())
    if parts1 & parts2:
        part_bonus = len(parts1 & parts2) / max(len(parts1), len(parts2)) * 0.3
        return max(SequenceMatcher(None, n1, n2).ratio(), 0.6 + part_bonus)

    base_ratio = SequenceMatcher(None, n1, n2).ratio()

    max_part_ratio = 0.0
    for p1 in parts1:
        for p2 in parts2:
            if len(p1) > 1 and len(p2) > 1:  # Skip single letters
                max_part_ratio = max(max_part_ratio, SequenceMatcher(None, p1, p2).ratio())

    if max_part_ratio > 0.8:
        base_ratio = max(base_ratio, max_part_ratio * 0.9)

    return base_ratio


def match_member(
    value: Any,
    members: List[Dict[str, Any]],
    threshold: float = 0.7,
) -> Optional[Tuple[Dict[str, Any], float]]:
    """
    Resolve a model-supplied assignee to a family member.

    Matching strategies (in order):
    1. Member id (the prompt asks the model for ids)
    2. Exact normalized name
    3. Fuzzy similarity above `threshold`

    Args:
        value: Id or name returned by the model
        members: Family members as dicts with `id` and `name`

    Returns:
        Tuple of (member, score) or None if nothing is close enough
    """
    if value is None:
        return None

    raw = str(value).strip()
    if raw.lower() in UNASSIGNED_VALUES:
        return None

    for member in members:
        if str(member["id"]) == raw:
            return (member, 1.0)

    best_match: Optional[Dict[str, Any]] = None
    best_score = 0.0
    normalized_input = normalize_name(raw)

    for member in members:
        if normalized_input == normalize_name(member["name"]):
            logger.debug(f"Exact match: '{raw}' -> '{member['name']}'")
            return (member, 1.0)

        score = calculate_similarity(raw, member["name"])
        if score > best_score:
            best_score = score
            best_match = member

    if best_match and best_score >= threshold:
        logger.info(f"Fuzzy match: '{raw}' -> '{best_match['name']}' (similarity: {best_score:.2f})")
        return (best_match, best_score)

    logger.warning(f"No member match found for '{raw}' (best score: {best_score:.2f})")
    return None
