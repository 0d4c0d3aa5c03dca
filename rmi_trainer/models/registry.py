"""Closed registry of model types, keyed by the names used in configurations."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Type

from rmi_trainer.data.training_data import KeyType
from rmi_trainer.errors import ConfigurationError
from rmi_trainer.models.base import Model
from rmi_trainer.models.cubic import CubicModel
from rmi_trainer.models.histogram import HistogramModel
from rmi_trainer.models.linear import LinearModel, LinearSplineModel, LogLinearModel, RobustLinearModel
from rmi_trainer.models.optimal_pla import OptimalPLAModel
from rmi_trainer.models.radix import (
    BalancedRadixModel,
    Radix18Model,
    Radix22Model,
    Radix26Model,
    Radix8Model,
    RadixModel,
)

MODEL_TYPES: Dict[str, Type[Model]] = {
    cls.model_name: cls
    for cls in (
        LinearModel,
        RobustLinearModel,
        LinearSplineModel,
        LogLinearModel,
        CubicModel,
        RadixModel,
        Radix8Model,
        Radix18Model,
        Radix22Model,
        Radix26Model,
        BalancedRadixModel,
        HistogramModel,
        OptimalPLAModel,
    )
}


def model_names() -> List[str]:
    return sorted(MODEL_TYPES)


def model_type(name: str) -> Type[Model]:
    try:
        return MODEL_TYPES[name.strip()]
    except KeyError:
        raise ConfigurationError(
            f"unknown model type '{name}' (known: {', '.join(model_names())})"
        ) from None


def create_model(name: str, branching_factor: Optional[int] = None) -> Model:
    return model_type(name)(branching_factor)


def supports_constant(name: str) -> bool:
    return model_type(name).supports_constant


def requires_integer_keys(name: str) -> bool:
    return model_type(name).requires_integer_keys


def parse_model_spec(models) -> List[str]:
    """``"radix,linear"`` or a sequence of names -> validated list of names."""
    if isinstance(models, str):
        names = [part.strip() for part in models.split(",")]
    else:
        names = [str(part).strip() for part in models]
    if not names or any(not name for name in names):
        raise ConfigurationError(f"malformed model specification {models!r}")
    for name in names:
        model_type(name)
    return names


def check_key_type(names: Sequence[str], key_type: KeyType) -> None:
    if key_type.is_integer:
        return
    for depth, name in enumerate(names):
        if requires_integer_keys(name):
            raise ConfigurationError(
                f"layer {depth}: model type '{name}' requires integer keys, got {key_type.as_str()}"
            )
