"""Tests for request classification."""

import pytest

from molexa.services.classifier import (
    Category,
    EndpointGroup,
    categorize,
    classify,
    endpoint_group,
)


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/api/pubchem/compound/name/aspirin/educational", Category.EDUCATIONAL_OVERVIEW),
        ("/api/pugview/compound/2244/safety?heading=Toxicity", Category.SAFETY_DATA),
        ("/api/pugview/compound/2244/pharmacology", Category.PHARMACOLOGY),
        ("/api/pubchem/compound/cid/2244/properties", Category.PROPERTIES),
        ("/api/autocomplete/asp", Category.AUTOCOMPLETE),
        ("/api/pugview/data/compound/2244/JSON", Category.EDUCATIONAL_ANNOTATIONS),
        ("/api/pubchem/compound/name/caffeine/JSON", Category.NAME_SEARCH),
        ("/api/pubchem/compound/cid/2519/JSON", Category.CID_LOOKUP),
        ("/api/pubchem/compound/formula/C9H8O4/JSON", Category.FORMULA_SEARCH),
        ("/api/pubchem/compound/fastformula/C8H10N4O2/cids/JSON", Category.FORMULA_SEARCH),
        ("/api/pubchem/compound/smiles/CCO/JSON", Category.SMILES_SEARCH),
        ("/api/pubchem/compound/cid/2244/PNG", Category.STRUCTURE_IMAGE),
        ("/api/pubchem/compound/name/aspirin/png?image_size=large", Category.STRUCTURE_IMAGE),
        ("/api/pubchem/compound/cid/2244/SDF", Category.STRUCTURE_FILE),
        ("/api/pubchem/compound/cid/2244/record.sdf", Category.STRUCTURE_FILE),
        ("/api/pubchem/substance/sid/12345/JSON", Category.OTHER_API),
    ],
)
def test_categorize(path, expected):
    assert categorize(path) == expected


def test_structure_image_and_safety_examples():
    assert classify("GET", "/api/pubchem/compound/cid/2244/PNG").category == Category.STRUCTURE_IMAGE
    result = classify("GET", "/api/pugview/compound/2244/safety?heading=Toxicity")
    assert result.category == Category.SAFETY_DATA
    assert result.trackable is True


def test_classify_is_deterministic():
    paths = [
        "/api/pubchem/compound/name/aspirin/JSON",
        "/api/docs",
        "/api/autocomplete/ben",
        "",
        "/health",
    ]
    for path in paths:
        assert classify("GET", path) == classify("GET", path)


def test_docs_never_trackable():
    assert classify("GET", "/api/docs").trackable is False
    assert classify("GET", "/api/json/docs").trackable is False


def test_exclude_list_wins_over_allow_list():
    # Allowed prefix, but an excluded pattern appears in the URL
    assert classify("GET", "/api/pubchem/compound/name/x?from=/api/dashboard").trackable is False
    assert classify("GET", "/api/pugview/api/health").trackable is False
    assert classify("GET", "/api/autocomplete/api/analytics").trackable is False


@pytest.mark.parametrize(
    "path",
    [
        "/api/pubchem/compound/name/aspirin/JSON",
        "/api/pugview/compound/2244/safety",
        "/api/autocomplete/asp",
    ],
)
def test_allow_list_is_trackable(path):
    assert classify("GET", path).trackable is True


@pytest.mark.parametrize(
    "method, path",
    [
        ("GET", "/health"),
        ("GET", "/analytics"),
        ("GET", "/dashboard"),
        ("GET", "/static/app.js"),
        ("OPTIONS", "/api/pubchem/compound/name/aspirin/JSON"),
        ("GET", ""),
        (None, "/api/pubchem/compound/name/aspirin/JSON"),
    ],
)
def test_non_trackable(method, path):
    assert classify(method, path).trackable is False


def test_garbage_input_degrades():
    result = classify(None, None)
    assert result.trackable is False
    assert result.category == Category.OTHER_API
    assert classify("GET", 12345).category == Category.OTHER_API


def test_endpoint_group():
    assert endpoint_group("/api/pubchem/compound/cid/2244/JSON") == EndpointGroup.PUBCHEM
    assert endpoint_group("/api/pugview/compound/2244/safety") == EndpointGroup.EDUCATIONAL
    assert endpoint_group("/api/autocomplete/asp") == EndpointGroup.SEARCH
    assert endpoint_group("/elsewhere") == EndpointGroup.OTHER
