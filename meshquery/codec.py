from __future__ import annotations

from typing import Any

import msgpack
import numpy as np

_NDARRAY_KEY = "__ndarray__"


def _encode(obj: Any) -> Any:
    if isinstance(obj, np.ndarray):
        arr = np.ascontiguousarray(obj)
        return {
            _NDARRAY_KEY: True,
            "dtype": arr.dtype.str,
            "shape": list(arr.shape),
            "data": arr.tobytes(order="C"),
        }
    if isinstance(obj, np.generic):
        return obj.item()
    raise TypeError(f"cannot pack object of type {type(obj).__name__}")


def _decode(obj: dict) -> Any:
    if obj.get(_NDARRAY_KEY):
        arr = np.frombuffer(obj["data"], dtype=np.dtype(obj["dtype"]))
        return arr.reshape(tuple(obj["shape"])).copy()
    return obj


def packb(payload: Any) -> bytes:
    """Pack a payload of plain values and numpy arrays into msgpack bytes."""
    return msgpack.packb(payload, default=_encode, use_bin_type=True)


def unpackb(raw: bytes) -> Any:
    return msgpack.unpackb(raw, object_hook=_decode, raw=False, strict_map_key=False)
