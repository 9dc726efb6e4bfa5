import numpy as np
import pytest

from biotrack.core.exceptions import InvalidEmbedding
from biotrack.utils.face_helper import (
    convert_numpy_types,
    embedding_from_json,
    embedding_to_json,
    validate_embedding,
)


def test_numpy_values_become_plain_python():
    converted = convert_numpy_types({"score": np.float32(0.5), "ok": np.bool_(True), "vec": np.array([1, 2])})
    assert converted == {"score": 0.5, "ok": True, "vec": [1, 2]}
    assert type(converted["score"]) is float


def test_embedding_json():
    raw = embedding_to_json(np.array([0.25, -1.0], dtype=np.float32))
    assert embedding_from_json(raw) == [0.25, -1.0]
    assert embedding_from_json(None) is None


@pytest.mark.parametrize("value", [[], "0.1,0.2", [0.1, "x"], [0.1, True], [float("inf")], None])
def test_malformed_embeddings_are_rejected(value):
    with pytest.raises(InvalidEmbedding):
        validate_embedding(value)


def test_stored_garbage_is_rejected():
    with pytest.raises(InvalidEmbedding):
        embedding_from_json("{not json")
