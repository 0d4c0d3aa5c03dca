"""
===============================================================================
MANIFEST
===============================================================================
Human-readable JSON description of a trained RMI, stored at

    <data_dir>/<namespace>/manifest.json

Layers with a single model keep their parameters inline ("Constant"). Wider
layers are written out-of-line next to the manifest as little-endian binary
files named ``<namespace>_L<index>_PARAMETERS``:

    Array        every parameter of every model is a scalar of one kind;
                 the file is a (num_models x params_per_model) matrix
    MixedArray   anything else; each model's parameters are written in order,
                 each in its own dtype
===============================================================================
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np

from rmi_trainer.errors import ManifestError
from rmi_trainer.models.base import ModelParam, ParamKind
from rmi_trainer.training.rmi import Layer, TrainedRMI

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"


@dataclass(frozen=True)
class ParamValue:
    kind: ParamKind
    value: Union[int, float, List[Union[int, float]]]

    @classmethod
    def from_param(cls, param: ModelParam) -> "ParamValue":
        return cls(param.kind, param.to_python())

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "value": self.value}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ParamValue":
        kind = ParamKind(payload["type"])
        value = payload["value"]
        if kind.is_array:
            value = list(value)
        elif kind is ParamKind.INT:
            value = int(value)
        else:
            value = float(value)
        return cls(kind, value)

    def __hash__(self) -> int:
        return hash((self.kind, tuple(self.value) if isinstance(self.value, list) else self.value))


@dataclass(frozen=True)
class ParameterDescriptor:
    kind: ParamKind
    len: int

    @classmethod
    def from_param(cls, param: ModelParam) -> "ParameterDescriptor":
        return cls(param.kind, len(param))

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "len": self.len}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ParameterDescriptor":
        return cls(ParamKind(payload["kind"]), int(payload["len"]))


@dataclass(frozen=True)
class LayerStorage:
    """``Constant`` (inline values), ``Array`` or ``MixedArray`` (file)."""

    strategy: str
    values: Optional[List[ParamValue]] = None
    file: Optional[str] = None

    STRATEGIES = ("Constant", "Array", "MixedArray")

    def __post_init__(self):
        if self.strategy not in self.STRATEGIES:
            raise ValueError(f"unknown layer storage strategy '{self.strategy}'")

    @classmethod
    def constant(cls, values: List[ParamValue]) -> "LayerStorage":
        return cls("Constant", values=list(values))

    @classmethod
    def array(cls, file: str) -> "LayerStorage":
        return cls("Array", file=file)

    @classmethod
    def mixed_array(cls, file: str) -> "LayerStorage":
        return cls("MixedArray", file=file)

    def to_dict(self) -> Dict[str, Any]:
        if self.strategy == "Constant":
            return {"Constant": {"values": [v.to_dict() for v in self.values or []]}}
        return {self.strategy: {"file": self.file}}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "LayerStorage":
        if len(payload) != 1:
            raise ValueError(f"layer storage must have exactly one strategy, got {sorted(payload)}")
        (strategy, body), = payload.items()
        if strategy == "Constant":
            return cls.constant([ParamValue.from_dict(v) for v in body["values"]])
        return cls(strategy, file=body["file"])


@dataclass(frozen=True)
class LayerMetadata:
    index: int
    model_type: str
    num_models: int
    params_per_model: int
    parameters: List[ParameterDescriptor]
    storage: LayerStorage

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "model_type": self.model_type,
            "num_models": self.num_models,
            "params_per_model": self.params_per_model,
            "parameters": [p.to_dict() for p in self.parameters],
            "storage": self.storage.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "LayerMetadata":
        return cls(
            index=int(payload["index"]),
            model_type=payload["model_type"],
            num_models=int(payload["num_models"]),
            params_per_model=int(payload["params_per_model"]),
            parameters=[ParameterDescriptor.from_dict(p) for p in payload["parameters"]],
            storage=LayerStorage.from_dict(payload["storage"]),
        )


@dataclass(frozen=True)
class CacheFixMetadata:
    file: str
    line_size: int
    points: int

    def to_dict(self) -> Dict[str, Any]:
        return {"file": self.file, "line_size": self.line_size, "points": self.points}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CacheFixMetadata":
        return cls(payload["file"], int(payload["line_size"]), int(payload["points"]))


@dataclass(frozen=True)
class RmiMetadata:
    namespace: str
    key_type: str
    models: str
    branching_factor: int
    build_time_ns: int
    num_rmi_rows: int
    num_data_rows: int
    model_avg_error: float
    model_avg_l2_error: float
    model_avg_log2_error: float
    model_max_error: int
    model_max_error_idx: int
    model_max_log2_error: float
    last_layer_reports_error: bool
    layers: List[LayerMetadata] = field(default_factory=list)
    cache_fix: Optional[CacheFixMetadata] = None

    @classmethod
    def from_rmi(cls, rmi: TrainedRMI, namespace: str, layers: List[LayerMetadata],
                 cache_fix: Optional[CacheFixMetadata] = None) -> "RmiMetadata":
        return cls(
            namespace=namespace,
            key_type=rmi.key_type.as_str(),
            models=rmi.models,
            branching_factor=rmi.branching_factor,
            build_time_ns=rmi.build_time_ns,
            num_rmi_rows=rmi.num_rmi_rows,
            num_data_rows=rmi.num_data_rows,
            model_avg_error=rmi.model_avg_error,
            model_avg_l2_error=rmi.model_avg_l2_error,
            model_avg_log2_error=rmi.model_avg_log2_error,
            model_max_error=rmi.model_max_error,
            model_max_error_idx=rmi.model_max_error_idx,
            model_max_log2_error=rmi.model_max_log2_error,
            last_layer_reports_error=rmi.last_layer_reports_error,
            layers=list(layers),
            cache_fix=cache_fix,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "key_type": self.key_type,
            "models": self.models,
            "branching_factor": self.branching_factor,
            "build_time_ns": self.build_time_ns,
            "num_rmi_rows": self.num_rmi_rows,
            "num_data_rows": self.num_data_rows,
            "model_avg_error": self.model_avg_error,
            "model_avg_l2_error": self.model_avg_l2_error,
            "model_avg_log2_error": self.model_avg_log2_error,
            "model_max_error": self.model_max_error,
            "model_max_error_idx": self.model_max_error_idx,
            "model_max_log2_error": self.model_max_log2_error,
            "last_layer_reports_error": self.last_layer_reports_error,
            "layers": [layer.to_dict() for layer in self.layers],
            "cache_fix": self.cache_fix.to_dict() if self.cache_fix else None,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RmiMetadata":
        cache_fix = payload.get("cache_fix")
        return cls(
            namespace=payload["namespace"],
            key_type=payload["key_type"],
            models=payload["models"],
            branching_factor=int(payload["branching_factor"]),
            build_time_ns=int(payload["build_time_ns"]),
            num_rmi_rows=int(payload["num_rmi_rows"]),
            num_data_rows=int(payload["num_data_rows"]),
            model_avg_error=float(payload["model_avg_error"]),
            model_avg_l2_error=float(payload["model_avg_l2_error"]),
            model_avg_log2_error=float(payload["model_avg_log2_error"]),
            model_max_error=int(payload["model_max_error"]),
            model_max_error_idx=int(payload["model_max_error_idx"]),
            model_max_log2_error=float(payload["model_max_log2_error"]),
            last_layer_reports_error=bool(payload["last_layer_reports_error"]),
            layers=[LayerMetadata.from_dict(layer) for layer in payload.get("layers", [])],
            cache_fix=CacheFixMetadata.from_dict(cache_fix) if cache_fix else None,
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "RmiMetadata":
        return cls.from_dict(json.loads(text))


# -----------------------------------------------------------------------------
# Paths and parameter files
# -----------------------------------------------------------------------------
def manifest_path(data_dir: Union[str, Path], namespace: str) -> Path:
    return Path(data_dir) / namespace / MANIFEST_FILENAME


def layer_parameter_file(namespace: str, index: int) -> str:
    return f"{namespace}_L{index}_PARAMETERS"


def _is_uniform_scalar_layer(layer: Layer) -> bool:
    kinds = {p.kind for m in layer.models for p in m.params()}
    return len(kinds) == 1 and not next(iter(kinds)).is_array


def _layer_bytes(layer: Layer) -> bytes:
    chunks = []
    for model in layer.models:
        for param in model.params():
            chunks.append(param.as_array().astype(param.kind.dtype.newbyteorder("<"), copy=False).tobytes())
    return b"".join(chunks)


def build_layer_metadata(rmi: TrainedRMI, data_dir: Union[str, Path], namespace: str,
                         write_files: bool = True) -> List[LayerMetadata]:
    """Describe every layer, writing out-of-line parameter files as needed."""
    out_dir = Path(data_dir) / namespace
    layers: List[LayerMetadata] = []
    for layer in rmi.layers:
        first = layer.models[0].params()
        if layer.num_models == 1:
            storage = LayerStorage.constant([ParamValue.from_param(p) for p in first])
        else:
            name = layer_parameter_file(namespace, layer.index)
            if _is_uniform_scalar_layer(layer):
                storage = LayerStorage.array(name)
            else:
                storage = LayerStorage.mixed_array(name)
            if write_files:
                _write_bytes(out_dir / name, _layer_bytes(layer))

        layers.append(
            LayerMetadata(
                index=layer.index,
                model_type=layer.model_type,
                num_models=layer.num_models,
                params_per_model=len(first),
                parameters=[ParameterDescriptor.from_param(p) for p in first],
                storage=storage,
            )
        )
    return layers


def read_layer_array(data_dir: Union[str, Path], namespace: str, layer: LayerMetadata) -> np.ndarray:
    """Load an ``Array`` layer file as a (num_models, params_per_model) matrix."""
    if layer.storage.strategy != "Array":
        raise ManifestError(f"layer {layer.index} is stored as {layer.storage.strategy}, not Array")
    dtype = layer.parameters[0].kind.dtype.newbyteorder("<")
    path = Path(data_dir) / namespace / layer.storage.file
    try:
        raw = np.fromfile(path, dtype=dtype)
    except OSError as exc:
        raise ManifestError(f"could not read parameter file {path}: {exc}") from exc
    return raw.reshape(layer.num_models, layer.params_per_model)


def _write_bytes(path: Path, payload: bytes) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
    except OSError as exc:
        raise ManifestError(f"could not write {path}: {exc}") from exc


# -----------------------------------------------------------------------------
# Manifest I/O
# -----------------------------------------------------------------------------
def write_metadata(namespace: str, data_dir: Union[str, Path], rmi: TrainedRMI,
                   layers: Optional[List[LayerMetadata]] = None,
                   cache_fix: Optional[CacheFixMetadata] = None) -> Path:
    """Write ``manifest.json`` (and layer parameter files) for ``rmi``."""
    if layers is None:
        layers = build_layer_metadata(rmi, data_dir, namespace)
    metadata = RmiMetadata.from_rmi(rmi, namespace, layers, cache_fix)
    path = manifest_path(data_dir, namespace)
    _write_bytes(path, metadata.to_json().encode("utf-8"))
    logger.info("wrote manifest for %s to %s", namespace, path)
    return path


def read_metadata(path: Union[str, Path]) -> RmiMetadata:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ManifestError(f"could not read manifest {path}: {exc}") from exc
    try:
        return RmiMetadata.from_json(text)
    except (KeyError, ValueError, TypeError) as exc:
        raise ManifestError(f"malformed manifest {path}: {exc}") from exc
