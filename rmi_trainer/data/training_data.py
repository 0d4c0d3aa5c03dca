"""
===============================================================================
TRAINING DATA CONTAINER
===============================================================================
Sorted (key, position) pairs that every model and the recursive trainer read
from. The container is a thin wrapper around two NumPy arrays:

    keys       sorted ascending, duplicates allowed, in the dataset's key dtype
    positions  0-based rank of each key (stable-sort consistent)

Slicing returns a view into the same buffers, so the per-layer partitions
built by the trainer never copy the underlying arrays unless routing produced
a non-contiguous bucket.

Usage:
    from rmi_trainer.data.training_data import KeyType, TrainingData

    data = TrainingData.from_keys(np.arange(1000, dtype=np.uint64))
    head = data[:100]              # view, no copy
    key, pos = data[42]
===============================================================================
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Iterator, Optional, Tuple

import numpy as np

from rmi_trainer.errors import ConfigurationError

_SIGN_BIT = np.uint64(1 << 63)


class KeyType(Enum):
    """Fixed-width key types an index can be trained over."""

    U32 = "u32"
    U64 = "u64"
    I64 = "i64"
    F64 = "f64"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_DTYPES[self])

    @property
    def is_integer(self) -> bool:
        return self is not KeyType.F64

    def as_str(self) -> str:
        """C type name used by generated lookup code and the manifest."""
        return _C_TYPES[self]

    @classmethod
    def from_name(cls, name: str) -> "KeyType":
        try:
            return cls(name.lower())
        except ValueError:
            raise ConfigurationError(f"unknown key type '{name}'") from None

    @classmethod
    def from_dtype(cls, dtype) -> "KeyType":
        dtype = np.dtype(dtype)
        if dtype.kind == "f":
            return cls.F64
        if dtype.kind == "i":
            return cls.I64
        if dtype.kind == "u":
            return cls.U32 if dtype.itemsize <= 4 else cls.U64
        raise ConfigurationError(f"unsupported key dtype {dtype}")


_DTYPES = {
    KeyType.U32: np.uint32,
    KeyType.U64: np.uint64,
    KeyType.I64: np.int64,
    KeyType.F64: np.float64,
}

_C_TYPES = {
    KeyType.U32: "uint32_t",
    KeyType.U64: "uint64_t",
    KeyType.I64: "int64_t",
    KeyType.F64: "double",
}


# -----------------------------------------------------------------------------
# Key projections
# -----------------------------------------------------------------------------
def keys_as_float(keys) -> np.ndarray:
    """Keys as float64, the input every regressor does its arithmetic on."""
    return np.asarray(keys).astype(np.float64, copy=False)


def keys_as_uint(keys) -> np.ndarray:
    """Order-preserving projection of keys onto uint64.

    Unsigned keys are widened, signed keys get their sign bit flipped and
    floats use the IEEE-754 total-order mapping, so ``a < b`` implies
    ``as_uint(a) < as_uint(b)`` for every supported key type.
    """
    keys = np.asarray(keys)
    if keys.dtype.kind == "u":
        return keys.astype(np.uint64, copy=False)
    if keys.dtype.kind == "i":
        return keys.astype(np.int64, copy=False).view(np.uint64) ^ _SIGN_BIT
    if keys.dtype.kind == "f":
        bits = keys.astype(np.float64, copy=False).view(np.uint64)
        negative = (bits & _SIGN_BIT) != 0
        return np.where(negative, ~bits, bits | _SIGN_BIT)
    raise ConfigurationError(f"unsupported key dtype {keys.dtype}")


class TrainingData:
    """Sorted, sliceable view over (key, position) training pairs."""

    __slots__ = ("keys", "positions", "key_type")

    def __init__(self, keys, positions=None, key_type: Optional[KeyType] = None, *, validate: bool = True):
        if key_type is None:
            key_type = KeyType.from_dtype(np.asarray(keys).dtype) if len(keys) else KeyType.U64
        keys = np.asarray(keys, dtype=key_type.dtype)
        if positions is None:
            positions = np.arange(keys.shape[0], dtype=np.int64)
        positions = np.asarray(positions, dtype=np.int64)

        if validate:
            if keys.ndim != 1 or positions.ndim != 1:
                raise ValueError("keys and positions must be 1-D arrays")
            if keys.shape[0] != positions.shape[0]:
                raise ValueError(
                    f"keys and positions differ in length ({keys.shape[0]} != {positions.shape[0]})"
                )
            if keys.shape[0] > 1 and np.any(keys[1:] < keys[:-1]):
                raise ValueError("training keys must be sorted ascending")

        self.keys = keys
        self.positions = positions
        self.key_type = key_type

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------
    @classmethod
    def from_keys(cls, keys, key_type: Optional[KeyType] = None) -> "TrainingData":
        """Sorted keys with dense positions ``0..N-1``."""
        return cls(keys, None, key_type)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[object, int]], key_type: KeyType = KeyType.U64) -> "TrainingData":
        pairs = list(pairs)
        keys = np.array([k for k, _ in pairs], dtype=key_type.dtype)
        positions = np.array([p for _, p in pairs], dtype=np.int64)
        return cls(keys, positions, key_type)

    @classmethod
    def empty(cls, key_type: KeyType = KeyType.U64) -> "TrainingData":
        return cls(np.empty(0, dtype=key_type.dtype), np.empty(0, dtype=np.int64), key_type, validate=False)

    # ------------------------------------------------------------------
    # Sequence protocol
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return int(self.keys.shape[0])

    def __getitem__(self, item):
        if isinstance(item, slice):
            if item.step not in (None, 1):
                raise ValueError("use sample() for strided views")
            return TrainingData(self.keys[item], self.positions[item], self.key_type, validate=False)
        return self.keys[item].item(), int(self.positions[item])

    def __iter__(self) -> Iterator[Tuple[object, int]]:
        return self.iter_pairs()

    def __repr__(self) -> str:
        return f"TrainingData(len={len(self)}, key_type={self.key_type.value})"

    def iter_pairs(self) -> Iterator[Tuple[object, int]]:
        for key, pos in zip(self.keys.tolist(), self.positions.tolist()):
            yield key, pos

    # ------------------------------------------------------------------
    # Views and copies
    # ------------------------------------------------------------------
    def get_key(self, idx: int):
        return self.keys[idx].item()

    def window(self, start: int, stop: int) -> "TrainingData":
        """Contiguous sub-range ``[start, stop)`` as a view."""
        start = max(0, int(start))
        stop = min(len(self), int(stop))
        return self[start:max(start, stop)]

    def take(self, indices: np.ndarray) -> "TrainingData":
        """Owned copy of the rows at ``indices`` (which must be ascending)."""
        return TrainingData(self.keys[indices], self.positions[indices], self.key_type, validate=False)

    def sample(self, step: int) -> "TrainingData":
        """Every ``step``-th pair; positions still refer to the full dataset."""
        step = int(step)
        if step < 1:
            raise ValueError("sample step must be >= 1")
        return TrainingData(self.keys[::step], self.positions[::step], self.key_type, validate=False)

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------
    def as_float(self) -> np.ndarray:
        return keys_as_float(self.keys)

    def as_uint(self) -> np.ndarray:
        return keys_as_uint(self.keys)

    def positions_as_float(self) -> np.ndarray:
        return self.positions.astype(np.float64)

    def position_range(self) -> Tuple[int, int]:
        """(min, max) position, ``(0, 0)`` when empty."""
        if len(self) == 0:
            return 0, 0
        return int(self.positions.min()), int(self.positions.max())
