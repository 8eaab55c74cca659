# tests/embeddings/test_similarity.py

import numpy as np
import pytest

from concept_linker.embeddings.similarity import (
    cosine_similarities,
    cosine_similarity,
    decode_vector,
    encode_vector,
)


def test_cosine_similarity_basic():
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_cosine_similarity_symmetric():
    a, b = [0.3, -1.2, 4.0], [2.0, 0.5, -0.7]
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))


@pytest.mark.parametrize(
    "a, b",
    [
        ([0.0, 0.0], [1.0, 1.0]),
        ([1.0, 2.0], [1.0, 2.0, 3.0]),
        ([], []),
        (None, [1.0]),
    ],
)
def test_cosine_similarity_degenerate_inputs(a, b):
    assert cosine_similarity(a, b) == 0.0


def test_cosine_similarities_skips_mismatched_dimensions():
    scores = cosine_similarities([1.0, 0.0], [[2.0, 0.0], [1.0, 0.0, 0.0], [0.0, 3.0]])
    assert scores == pytest.approx([1.0, 0.0, 0.0])


def test_decode_json_text_and_bytes():
    encoded = encode_vector([0.5, -1.0, 2.0])
    assert decode_vector(encoded) == [0.5, -1.0, 2.0]
    assert decode_vector(encoded.encode("utf-8")) == [0.5, -1.0, 2.0]


def test_decode_legacy_float32_blob():
    raw = np.array([0.25, -0.5, 1.0], dtype=np.float32).tobytes()
    assert decode_vector(raw) == [0.25, -0.5, 1.0]
    assert decode_vector(memoryview(raw)) == [0.25, -0.5, 1.0]


@pytest.mark.parametrize("raw", [None, "not json", '{"a": 1}', '["x"]', b"\x00\x01\x02"])
def test_decode_invalid_returns_none(raw):
    assert decode_vector(raw) is None
