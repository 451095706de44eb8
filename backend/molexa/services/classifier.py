"""
Request classifier. Decides whether an inbound call is genuine API usage
and which category it belongs to.

Pure functions only: no I/O, no shared state, never raises.
"""

import enum
from typing import NamedTuple, Optional


class Category(str, enum.Enum):
    EDUCATIONAL_OVERVIEW = "Educational Overview"
    SAFETY_DATA = "Safety Data"
    PHARMACOLOGY = "Pharmacology"
    PROPERTIES = "Properties"
    AUTOCOMPLETE = "Autocomplete"
    EDUCATIONAL_ANNOTATIONS = "Educational Annotations"
    NAME_SEARCH = "Name Search"
    CID_LOOKUP = "CID Lookup"
    FORMULA_SEARCH = "Formula Search"
    SMILES_SEARCH = "SMILES Search"
    STRUCTURE_IMAGE = "Structure Image"
    STRUCTURE_FILE = "Structure File"
    OTHER_API = "Other API"


class EndpointGroup(str, enum.Enum):
    PUBCHEM = "PubChem API"
    EDUCATIONAL = "Educational Content"
    SEARCH = "Search Suggestions"
    OTHER = "Other"


class Classification(NamedTuple):
    trackable: bool
    category: Category


# Real API usage
TRACKABLE_PREFIXES = (
    "/api/pubchem/",
    "/api/pugview/",
    "/api/autocomplete/",
)

# Documentation / meta traffic. Checked first: exclusion always wins.
EXCLUDED_PATTERNS = (
    "/api/docs",
    "/api/json/docs",
    "/api/analytics",
    "/api/health",
    "/api/dashboard",
)

UNTRACKED_METHODS = {"OPTIONS"}

# (substring, category), first match wins
_CATEGORY_RULES = (
    ("/educational", Category.EDUCATIONAL_OVERVIEW),
    ("/safety", Category.SAFETY_DATA),
    ("/pharmacology", Category.PHARMACOLOGY),
    ("/properties", Category.PROPERTIES),
    ("/autocomplete", Category.AUTOCOMPLETE),
    ("/pugview", Category.EDUCATIONAL_ANNOTATIONS),
)

_COMPOUND_RULES = (
    ("/compound/name/", Category.NAME_SEARCH),
    ("/compound/cid/", Category.CID_LOOKUP),
    ("/compound/formula/", Category.FORMULA_SEARCH),
    ("/compound/fastformula/", Category.FORMULA_SEARCH),
    ("/compound/smiles/", Category.SMILES_SEARCH),
)


def _split_path(path: Optional[str]) -> str:
    if not isinstance(path, str):
        return ""
    return path.split("?", 1)[0].split("#", 1)[0]


def _has_suffix(path: str, ext: str) -> bool:
    """True for '.../PNG' and '....png' style endings."""
    return path.endswith("/" + ext) or path.endswith("." + ext)


def is_trackable(method: Optional[str], path: Optional[str]) -> bool:
    if not isinstance(path, str) or not path:
        return False
    if not isinstance(method, str) or method.upper() in UNTRACKED_METHODS:
        return False

    lowered = path.lower()
    if any(pattern in lowered for pattern in EXCLUDED_PATTERNS):
        return False

    bare = _split_path(lowered)
    return any(bare.startswith(prefix) for prefix in TRACKABLE_PREFIXES)


def categorize(path: Optional[str]) -> Category:
    bare = _split_path(path).lower()
    if not bare:
        return Category.OTHER_API

    for needle, category in _CATEGORY_RULES:
        if needle in bare:
            return category

    if _has_suffix(bare, "png"):
        return Category.STRUCTURE_IMAGE
    if _has_suffix(bare, "sdf"):
        return Category.STRUCTURE_FILE

    for needle, category in _COMPOUND_RULES:
        if needle in bare:
            return category

    return Category.OTHER_API


def classify(method: Optional[str], path: Optional[str]) -> Classification:
    """Return (trackable, category) for one request."""
    return Classification(trackable=is_trackable(method, path), category=categorize(path))


def endpoint_group(path: Optional[str]) -> EndpointGroup:
    bare = _split_path(path).lower()
    if "/pubchem" in bare:
        return EndpointGroup.PUBCHEM
    if "/pugview" in bare:
        return EndpointGroup.EDUCATIONAL
    if "/autocomplete" in bare:
        return EndpointGroup.SEARCH
    return EndpointGroup.OTHER
