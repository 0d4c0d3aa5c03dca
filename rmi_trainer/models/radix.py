"""
===============================================================================
RADIX MODELS
===============================================================================
Radix models never regress; they read a slice of the key's bits.

    radix, radix8 ...  strip the high bits shared by the whole key range, take
                       the next ``bits`` bits as a bucket and spread buckets
                       linearly over the range's positions
    bradix             same bucket extraction, but each bucket maps to the
                       first position actually observed in it, so dense key
                       regions get proportionally more of the output range

Both work on the uint projection of the key and are only offered for integer
key types. Neither can represent a constant, so a radix layer that receives an
empty bucket fails its configuration.
===============================================================================
"""

from __future__ import annotations

import math
from typing import ClassVar, List, Optional, Sequence

import numpy as np

from rmi_trainer.data.training_data import TrainingData, keys_as_uint
from rmi_trainer.models.base import Model, ModelParam, ParamKind

DEFAULT_RADIX_BITS = 8
MAX_BRADIX_BITS = 20


def common_prefix_length(lo: int, hi: int) -> int:
    """Number of leading bits shared by two uint64 values."""
    return 64 - (int(lo) ^ int(hi)).bit_length()


def bits_for_branching_factor(branching_factor: Optional[int], default: int = DEFAULT_RADIX_BITS) -> int:
    if not branching_factor or branching_factor < 2:
        return default
    return max(1, math.ceil(math.log2(branching_factor)))


class RadixModel(Model):
    model_name = "radix"
    supports_constant = False
    requires_integer_keys = True
    default_bits: ClassVar[Optional[int]] = None

    def __init__(self, branching_factor=None):
        super().__init__(branching_factor)
        self.bits = self.default_bits or bits_for_branching_factor(branching_factor)
        self.prefix = 64
        self.scale = 0.0
        self.offset = 0.0

    def _fit(self, data: TrainingData) -> None:
        if len(data) == 0:
            self.prefix, self.scale, self.offset = 64, 0.0, 0.0
            return
        ukeys = data.as_uint()
        self.prefix = common_prefix_length(ukeys[0], ukeys[-1])
        lo, hi = data.position_range()
        self.offset = float(lo)
        self.scale = (hi - lo + 1) / float(1 << self.bits)

    def buckets(self, ukeys: np.ndarray) -> np.ndarray:
        """The ``bits`` bits that follow the shared prefix, as uint64."""
        if self.prefix >= 64:
            return np.zeros(ukeys.shape[0], dtype=np.uint64)
        shift = 64 - self.prefix - self.bits
        if shift >= 0:
            out = ukeys >> np.uint64(shift)
        else:
            out = ukeys << np.uint64(-shift)
        return out & np.uint64((1 << self.bits) - 1)

    def _predict(self, keys: np.ndarray) -> np.ndarray:
        return self.buckets(keys_as_uint(keys)).astype(np.float64) * self.scale + self.offset

    def params(self) -> List[ModelParam]:
        return [
            ModelParam.from_int(self.prefix),
            ModelParam.from_int(self.bits),
            ModelParam.from_float(self.scale),
            ModelParam.from_float(self.offset),
        ]

    @classmethod
    def from_params(cls, params: Sequence[ModelParam]) -> "RadixModel":
        model = cls()
        model.prefix, model.bits = int(params[0].value), int(params[1].value)
        model.scale, model.offset = float(params[2].value), float(params[3].value)
        return model

    def set_to_constant_model(self, value: int) -> bool:
        return False

    def code(self) -> str:
        return (
            f"inline double {self.function_name()}(uint64_t prefix, uint64_t bits, "
            "double scale, double offset, uint64_t inp) {\n"
            "    if (prefix >= 64) return offset;\n"
            "    uint64_t b = (inp << prefix) >> (64 - bits);\n"
            "    return std::fma((double)b, scale, offset);\n"
            "}"
        )


class Radix8Model(RadixModel):
    model_name = "radix8"
    default_bits = 8


class Radix18Model(RadixModel):
    model_name = "radix18"
    default_bits = 18


class Radix22Model(RadixModel):
    model_name = "radix22"
    default_bits = 22


class Radix26Model(RadixModel):
    model_name = "radix26"
    default_bits = 26


class BalancedRadixModel(RadixModel):
    """Radix buckets mapped onto the observed position of each bucket."""

    model_name = "bradix"

    def __init__(self, branching_factor=None):
        super().__init__(branching_factor)
        self.bits = min(self.bits, MAX_BRADIX_BITS)
        self.starts = np.zeros(1, dtype=np.uint64)

    def _fit(self, data: TrainingData) -> None:
        super()._fit(data)
        if len(data) == 0:
            self.starts = np.zeros((1 << self.bits) + 1, dtype=np.uint64)
            return
        buckets = self.buckets(data.as_uint())
        first = np.searchsorted(buckets, np.arange((1 << self.bits) + 1, dtype=np.uint64), side="left")
        hi = data.position_range()[1]
        padded = np.append(data.positions, hi + 1)
        self.starts = padded[first].astype(np.uint64)

    def _predict(self, keys: np.ndarray) -> np.ndarray:
        idx = self.buckets(keys_as_uint(keys)).astype(np.int64)
        return self.starts[idx].astype(np.float64)

    def _table_kind(self) -> ParamKind:
        if self.starts.size and int(self.starts.max()) >= 1 << 32:
            return ParamKind.INT_ARRAY
        return ParamKind.INT32_ARRAY

    def params(self) -> List[ModelParam]:
        return [
            ModelParam.from_int(self.prefix),
            ModelParam.from_int(self.bits),
            ModelParam.from_array(self._table_kind(), self.starts),
        ]

    @classmethod
    def from_params(cls, params: Sequence[ModelParam]) -> "BalancedRadixModel":
        model = cls()
        model.prefix, model.bits = int(params[0].value), int(params[1].value)
        model.starts = np.asarray(params[2].value, dtype=np.uint64)
        return model

    def code(self) -> str:
        return (
            f"inline double {self.function_name()}(uint64_t prefix, uint64_t bits, "
            "const uint64_t starts[], uint64_t inp) {\n"
            "    if (prefix >= 64) return (double)starts[0];\n"
            "    uint64_t b = (inp << prefix) >> (64 - bits);\n"
            "    return (double)starts[b];\n"
            "}"
        )
