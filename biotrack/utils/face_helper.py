import json
import math
from typing import Any, List, Optional, Sequence

import numpy as np

from biotrack.core.exceptions import InvalidEmbedding


def convert_numpy_types(obj):
    """Convert NumPy types to Python native types"""
    if isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, (np.float32, np.float64, np.float16)):
        return float(obj)
    elif isinstance(obj, (np.int32, np.int64)):
        return int(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, dict):
        return {k: convert_numpy_types(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [convert_numpy_types(item) for item in obj]
    else:
        return obj


def validate_embedding(embedding: Any) -> List[float]:
    """
    Check that an embedding is a non-empty flat list of finite numbers and
    return it as plain floats.
    """
    embedding = convert_numpy_types(embedding)
    if not isinstance(embedding, list) or len(embedding) == 0:
        raise InvalidEmbedding("Embedding must be a non-empty list of numbers")

    values = []
    for value in embedding:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidEmbedding("Embedding must contain only numbers")
        if not math.isfinite(value):
            raise InvalidEmbedding("Embedding contains a non-finite value")
        values.append(float(value))
    return values


def embedding_to_json(embedding: Sequence[float]) -> str:
    return json.dumps(validate_embedding(list(embedding)))


def embedding_from_json(raw: Optional[str]) -> Optional[List[float]]:
    """Parse a stored embedding; raises InvalidEmbedding on malformed data"""
    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise InvalidEmbedding(f"Stored embedding is not valid JSON: {e}")
    return validate_embedding(parsed)
