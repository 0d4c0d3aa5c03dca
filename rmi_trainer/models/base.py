"""
===============================================================================
MODEL ABSTRACTION
===============================================================================
Every regressor an RMI layer can hold derives from ``Model``. A model is fitted
on a contiguous range of a TrainingData container and afterwards maps a key to
a float position estimate.

Contract shared by all variants:
    fit(data, start, stop)   never raises on degenerate input; an empty range
                             gives a constant-zero model, a single pair gives
                             a constant model at that pair's position
    predict / predict_batch  pure functions of the fitted state
    predict_to_int           floor of the prediction, saturating at 0
    params()                 ordered ModelParam list, enough to re-hydrate
    error_bound()            absolute bound on the integer prediction error,
                             or None when the caller must search unbounded
    set_to_constant_model    force a constant output; False if the model
                             type cannot represent one

The code-generation boundary (model_name, function_name, code,
standard_functions) only exposes text; emitting lookup code is external.
===============================================================================
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, List, Optional, Set, Union

import numpy as np

from rmi_trainer.data.training_data import KeyType, TrainingData


class ParamKind(Enum):
    INT = "Int"
    FLOAT = "Float"
    SHORT_ARRAY = "ShortArray"
    INT_ARRAY = "IntArray"
    INT32_ARRAY = "Int32Array"
    FLOAT_ARRAY = "FloatArray"

    @property
    def is_array(self) -> bool:
        return self not in (ParamKind.INT, ParamKind.FLOAT)

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_PARAM_DTYPES[self])

    @property
    def c_type(self) -> str:
        return _PARAM_C_TYPES[self]


_PARAM_DTYPES = {
    ParamKind.INT: np.uint64,
    ParamKind.FLOAT: np.float64,
    ParamKind.SHORT_ARRAY: np.uint16,
    ParamKind.INT_ARRAY: np.uint64,
    ParamKind.INT32_ARRAY: np.uint32,
    ParamKind.FLOAT_ARRAY: np.float64,
}

# largest float that still converts to int64 without overflow
_MAX_INT_PREDICTION = 9.0e18

_PARAM_C_TYPES = {
    ParamKind.INT: "uint64_t",
    ParamKind.FLOAT: "double",
    ParamKind.SHORT_ARRAY: "uint16_t",
    ParamKind.INT_ARRAY: "uint64_t",
    ParamKind.INT32_ARRAY: "uint32_t",
    ParamKind.FLOAT_ARRAY: "double",
}


@dataclass(frozen=True, eq=False)
class ModelParam:
    """A tagged model parameter: scalar int/float or a typed array."""

    kind: ParamKind
    value: Union[int, float, np.ndarray]

    @classmethod
    def from_int(cls, value) -> "ModelParam":
        return cls(ParamKind.INT, int(value))

    @classmethod
    def from_float(cls, value) -> "ModelParam":
        return cls(ParamKind.FLOAT, float(value))

    @classmethod
    def from_array(cls, kind: ParamKind, values) -> "ModelParam":
        if not kind.is_array:
            raise ValueError(f"{kind.value} is not an array kind")
        arr = np.array(values, dtype=kind.dtype).reshape(-1)
        arr.setflags(write=False)
        return cls(kind, arr)

    def __len__(self) -> int:
        return int(self.value.shape[0]) if self.kind.is_array else 1

    def is_array(self) -> bool:
        return self.kind.is_array

    def c_type(self) -> str:
        return self.kind.c_type

    def size_bytes(self) -> int:
        return len(self) * self.kind.dtype.itemsize

    def as_array(self) -> np.ndarray:
        """Value as a 1-D array of this kind's dtype (scalars become length 1)."""
        if self.kind.is_array:
            return self.value
        return np.array([self.value], dtype=self.kind.dtype)

    def to_python(self):
        if self.kind.is_array:
            return self.value.tolist()
        return self.value

    def __eq__(self, other) -> bool:
        if not isinstance(other, ModelParam):
            return NotImplemented
        if other.kind is not self.kind:
            return False
        if self.kind.is_array:
            return bool(np.array_equal(self.value, other.value))
        return self.value == other.value

    def __hash__(self) -> int:
        return hash((self.kind, tuple(self.to_python()) if self.kind.is_array else self.value))


class StdFunction(Enum):
    """Helper routines generated lookup code may need."""

    BINARY_SEARCH = "binary_search"


class Model(ABC):
    """Base class for every RMI regressor."""

    model_name: ClassVar[str] = "model"
    supports_constant: ClassVar[bool] = True
    requires_integer_keys: ClassVar[bool] = False

    def __init__(self, branching_factor: Optional[int] = None):
        self.key_type: KeyType = KeyType.U64
        self.branching_factor = branching_factor

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------
    def fit(self, data: TrainingData, start: int = 0, stop: Optional[int] = None) -> "Model":
        """Fit on ``data[start:stop]``; degenerate ranges fall back to constants."""
        stop = len(data) if stop is None else stop
        window = data.window(start, stop)
        self.key_type = data.key_type
        if len(window) == 0:
            self._fit_empty()
        elif len(window) == 1:
            if not self.set_to_constant_model(int(window.positions[0])):
                self._fit(window)
        else:
            self._fit(window)
        return self

    def _fit_empty(self) -> None:
        if not self.set_to_constant_model(0):
            self._fit(TrainingData.empty(self.key_type))

    @abstractmethod
    def _fit(self, data: TrainingData) -> None:
        """Fit on a window; may be called with zero or one pair for models
        that cannot represent a constant."""

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------
    @abstractmethod
    def _predict(self, keys: np.ndarray) -> np.ndarray:
        """Vectorised prediction over keys already in this model's key dtype."""

    def predict_batch(self, keys) -> np.ndarray:
        keys = np.asarray(keys, dtype=self.key_type.dtype).reshape(-1)
        return np.asarray(self._predict(keys), dtype=np.float64)

    def predict(self, key) -> float:
        return float(self.predict_batch([key])[0])

    def predict_to_int_batch(self, keys) -> np.ndarray:
        preds = np.floor(self.predict_batch(keys))
        preds = np.nan_to_num(preds, nan=0.0, posinf=_MAX_INT_PREDICTION, neginf=0.0)
        return np.clip(preds, 0.0, _MAX_INT_PREDICTION).astype(np.int64)

    def predict_to_int(self, key) -> int:
        return int(self.predict_to_int_batch([key])[0])

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @abstractmethod
    def params(self) -> List[ModelParam]:
        ...

    def error_bound(self) -> Optional[int]:
        return None

    @abstractmethod
    def set_to_constant_model(self, value: int) -> bool:
        ...

    def needs_bounds_check(self) -> bool:
        return True

    def size_bytes(self) -> int:
        return sum(p.size_bytes() for p in self.params())

    # ------------------------------------------------------------------
    # Code generation boundary
    # ------------------------------------------------------------------
    def function_name(self) -> str:
        return self.model_name

    def standard_functions(self) -> Set[StdFunction]:
        return set()

    @abstractmethod
    def code(self) -> str:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({', '.join(repr(p.to_python()) for p in self.params() if not p.is_array())})"
