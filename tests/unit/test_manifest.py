from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from rmi_trainer.data.training_data import TrainingData
from rmi_trainer.errors import ManifestError
from rmi_trainer.manifest import (
    CacheFixMetadata,
    LayerStorage,
    ParamValue,
    RmiMetadata,
    build_layer_metadata,
    layer_parameter_file,
    manifest_path,
    read_layer_array,
    read_metadata,
    write_metadata,
)
from rmi_trainer.models.base import ParamKind
from rmi_trainer.training.trainer import train


def test_manifest_path() -> None:
    assert manifest_path("/data", "books") == Path("/data/books/manifest.json")
    assert layer_parameter_file("books", 1) == "books_L1_PARAMETERS"


def test_param_value_tagging() -> None:
    value = ParamValue(ParamKind.FLOAT, 1.5)
    assert value.to_dict() == {"type": "Float", "value": 1.5}
    assert ParamValue.from_dict({"type": "IntArray", "value": [1, 2]}) == ParamValue(ParamKind.INT_ARRAY, [1, 2])


def test_layer_storage_shapes() -> None:
    constant = LayerStorage.constant([ParamValue(ParamKind.INT, 3)])
    assert constant.to_dict() == {"Constant": {"values": [{"type": "Int", "value": 3}]}}
    assert LayerStorage.from_dict(constant.to_dict()) == constant
    assert LayerStorage.array("f").to_dict() == {"Array": {"file": "f"}}
    assert LayerStorage.from_dict({"MixedArray": {"file": "g"}}) == LayerStorage.mixed_array("g")
    with pytest.raises(ValueError):
        LayerStorage("Sparse")


def test_write_and_read_round_trip(tmp_path: Path, uniform_data: TrainingData) -> None:
    rmi = train(uniform_data, "cubic,linear", 32)
    cache_fix = CacheFixMetadata("cf_file", 64, 12)
    path = write_metadata("uniform", tmp_path, rmi, cache_fix=cache_fix)
    assert path == tmp_path / "uniform" / "manifest.json"

    payload = json.loads(path.read_text())
    assert payload["models"] == "cubic,linear"
    assert payload["key_type"] == "uint64_t"
    assert payload["branching_factor"] == 32
    root = payload["layers"][0]
    assert root["num_models"] == 1
    assert root["params_per_model"] == 6
    assert root["storage"]["Constant"]["values"][0]["type"] == "Float"
    assert payload["layers"][1]["storage"] == {"Array": {"file": "uniform_L1_PARAMETERS"}}

    metadata = read_metadata(path)
    assert metadata.namespace == "uniform"
    assert metadata.model_max_error == rmi.model_max_error
    assert metadata.model_avg_log2_error == rmi.model_avg_log2_error
    assert metadata.last_layer_reports_error == rmi.last_layer_reports_error
    assert metadata.cache_fix == cache_fix
    assert metadata == RmiMetadata.from_json(path.read_text())

    leaf = read_layer_array(tmp_path, "uniform", metadata.layers[1])
    assert leaf.shape == (32, 2)
    expected = np.array([[p.value for p in m.params()] for m in rmi.layers[1].models])
    assert leaf.tolist() == expected.tolist()


def test_mixed_layers_write_every_parameter(tmp_path: Path, uniform_data: TrainingData) -> None:
    rmi = train(uniform_data, "linear,optimal_pla", 8)
    layers = build_layer_metadata(rmi, tmp_path, "pla")
    leaf = layers[1]
    assert leaf.storage.strategy == "MixedArray"
    assert [p.kind for p in leaf.parameters][0] is ParamKind.INT
    written = (tmp_path / "pla" / leaf.storage.file).stat().st_size
    assert written == rmi.layers[1].size_bytes()
    with pytest.raises(ManifestError, match="not Array"):
        read_layer_array(tmp_path, "pla", leaf)


def test_metadata_without_files(tmp_path: Path, sequential_data: TrainingData) -> None:
    rmi = train(sequential_data, "linear,linear", 4)
    layers = build_layer_metadata(rmi, tmp_path, "dry", write_files=False)
    assert len(layers) == 2
    assert not (tmp_path / "dry").exists()


def test_read_errors(tmp_path: Path) -> None:
    with pytest.raises(ManifestError, match="could not read"):
        read_metadata(tmp_path / "missing.json")
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    with pytest.raises(ManifestError, match="malformed"):
        read_metadata(broken)
