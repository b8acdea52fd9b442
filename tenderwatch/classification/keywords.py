"""Construction keyword matching and project categorisation.

Deterministic, dependency-free classification of tender text:
- construction relevance via substring keyword hits
- project category via an ordered decision list (first match wins)

Re-fetching an unchanged record must classify identically, so nothing here
may depend on time, randomness or external state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple


# -----------------------------
# Construction keywords
# -----------------------------
CONSTRUCTION_KEYWORDS = [
    # infrastructure
    "infrastructure",
    "civil works",
    "civil engineering",
    # roads & transport
    "road",
    "highway",
    "motorway",
    "bridge",
    "tunnel",
    "airport",
    "runway",
    "footpath",
    "cycleway",
    "carpark",
    "car park",
    "street",
    # buildings
    "construction",
    "building",
    "hospital",
    "school",
    "university",
    "education facility",
    "health facility",
    "medical centre",
    "community centre",
    "library",
    # defence
    "defence",
    "defense",
    "military",
    "base",
    "barracks",
    # utilities & services
    "drainage",
    "stormwater",
    "sewer",
    "water treatment",
    "wastewater",
    "water supply",
    "sewerage",
    # landscaping & site
    "landscaping",
    "earthworks",
    "site works",
    "ground works",
    "civil construction",
    "retaining wall",
    "fencing",
    # structural
    "structural",
    "demolition",
    "renovation",
    "refurbishment",
    "fit-out",
    "fitout",
    "architectural",
    "maintenance",
    # council
    "park",
    "playground",
    "sports field",
    "oval",
    "pavilion",
    "toilet block",
    "depot",
    "waste facility",
]


DEFAULT_CATEGORY = "General Construction"

# Ordered most specific -> least specific. Reordering changes outcomes for
# any text matching more than one group.
CATEGORY_RULES: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("Defence", re.compile(r"defence|defense|military|base|barracks")),
    ("Airports & Aviation", re.compile(r"airport|runway|aviation")),
    ("Hospitals & Healthcare", re.compile(r"hospital|health|medical centre|clinic")),
    ("Schools & Education", re.compile(r"school|university|education|campus|college")),
    ("Roads & Highways", re.compile(r"road|highway|motorway|street|pavement|footpath|cycleway")),
    ("Bridges & Tunnels", re.compile(r"bridge|tunnel|overpass")),
    ("Drainage & Water", re.compile(r"drainage|stormwater|sewer|wastewater|water treatment|sewerage")),
    ("Landscaping & Parks", re.compile(r"landscaping|park|garden|ground works|playground|sports field")),
    ("Rail", re.compile(r"rail|train|metro|light rail")),
    ("Buildings & Facilities", re.compile(r"building|facility|construction|community centre|library")),
    ("Civil & Infrastructure", re.compile(r"civil works|civil engineering|infrastructure")),
    ("Council Services", re.compile(r"waste|depot|toilet block")),
)

CATEGORIES: Tuple[str, ...] = tuple(name for name, _ in CATEGORY_RULES) + (DEFAULT_CATEGORY,)


@dataclass(frozen=True)
class Classification:
    is_construction: bool
    category: str


def _blob(title: Optional[str], description: Optional[str]) -> str:
    return f"{title or ''} {description or ''}".lower()


def is_construction_related(text: Optional[str]) -> bool:
    if not text:
        return False
    lower = text.lower()
    return any(kw in lower for kw in CONSTRUCTION_KEYWORDS)


def categorize(title: Optional[str], description: Optional[str] = None) -> str:
    text = _blob(title, description)
    for category, pattern in CATEGORY_RULES:
        if pattern.search(text):
            return category
    return DEFAULT_CATEGORY


def classify(title: Optional[str], description: Optional[str] = None) -> Classification:
    """Classify a title/description pair.

    Construction relevance is a substring hit on the concatenated text, so
    "reconstructions" matches "construction". The category is computed for
    every record, including non-construction ones from general feeds.
    """
    return Classification(
        is_construction=is_construction_related(_blob(title, description)),
        category=categorize(title, description),
    )
