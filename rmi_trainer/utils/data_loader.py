"""
===============================================================================
DATA LOADER MODULE
===============================================================================
Synthetic key sets and SOSD-style binary key files for training RMIs.

The DatasetGenerator class creates sorted key arrays in a few distributions:
    • Sequential: evenly spaced integers (a single line fits them exactly)
    • Uniform: random spread across a range
    • Mixed: clustered/random blend to simulate real-world skew
    • Lognormal: heavy right tail, hard for a single linear model

load_keys() reads the binary layout used by the SOSD benchmark: a
little-endian uint64 count followed by that many keys.

Usage:
    from rmi_trainer.utils.data_loader import DatasetGenerator

    keys = DatasetGenerator.generate_uniform(10000)
    data = DatasetGenerator.training_data(keys)
===============================================================================
"""

from pathlib import Path
from typing import Optional, Union

import numpy as np

from rmi_trainer.data.training_data import KeyType, TrainingData


class DatasetGenerator:
    """Generate sorted uint64 key sets for training and benchmarks."""

    @staticmethod
    def generate_uniform(size: int, min_val: int = 0, max_val: int = 1_000_000_000,
                         seed: Optional[int] = None) -> np.ndarray:
        """Uniformly distributed random keys."""
        rng = np.random.default_rng(seed)
        keys = rng.integers(min_val, max_val, size, dtype=np.uint64)
        return np.sort(keys)

    @staticmethod
    def generate_sequential(size: int, start: int = 0, step: int = 1) -> np.ndarray:
        """Sequential keys (0, 1, 2, …)."""
        return np.arange(start, start + size * step, step, dtype=np.uint64)

    @staticmethod
    def generate_mixed(size: int, seed: Optional[int] = None) -> np.ndarray:
        """Mixed distribution: uniform + two clusters."""
        rng = np.random.default_rng(seed)
        uniform = rng.uniform(0, 1_000_000_000, int(size * 0.4))
        cluster1 = rng.normal(250_000_000, 10_000_000, int(size * 0.3))
        cluster2 = rng.normal(750_000_000, 10_000_000, size - int(size * 0.4) - int(size * 0.3))
        keys = np.concatenate([uniform, cluster1, cluster2])
        keys = np.clip(keys, 0, None).astype(np.uint64)
        return np.sort(keys)

    @staticmethod
    def generate_lognormal(size: int, sigma: float = 2.0, scale: float = 1e9,
                           seed: Optional[int] = None) -> np.ndarray:
        """Lognormal keys scaled into the uint64 range."""
        rng = np.random.default_rng(seed)
        raw = rng.lognormal(0.0, sigma, size) * scale
        raw = np.minimum(raw, float(np.iinfo(np.uint64).max // 2))
        return np.sort(raw.astype(np.uint64))

    @staticmethod
    def training_data(keys: np.ndarray, key_type: Optional[KeyType] = None) -> TrainingData:
        """Wrap sorted keys as (key, rank) training pairs."""
        return TrainingData.from_keys(keys, key_type)


def load_keys(path: Union[str, Path], key_type: KeyType = KeyType.U64) -> np.ndarray:
    """Read an SOSD-style binary key file (uint64 count, then keys)."""
    path = Path(path)
    with path.open("rb") as fh:
        header = np.fromfile(fh, dtype="<u8", count=1)
        if header.shape[0] != 1:
            raise ValueError(f"{path}: missing key count header")
        count = int(header[0])
        keys = np.fromfile(fh, dtype=key_type.dtype.newbyteorder("<"), count=count)
    if keys.shape[0] != count:
        raise ValueError(f"{path}: header promises {count} keys, found {keys.shape[0]}")
    return keys.astype(key_type.dtype, copy=False)


def save_keys(path: Union[str, Path], keys: np.ndarray, key_type: KeyType = KeyType.U64) -> None:
    """Write keys in the layout load_keys() reads."""
    keys = np.asarray(keys, dtype=key_type.dtype.newbyteorder("<"))
    with Path(path).open("wb") as fh:
        np.array([keys.shape[0]], dtype="<u8").tofile(fh)
        keys.tofile(fh)


# -----------------------------------------------------------------------------
# Quick-run tester: plot each dataset's CDF with a trained RMI's predictions
# -----------------------------------------------------------------------------
if __name__ == "__main__":
    import matplotlib.pyplot as plt

    from rmi_trainer.training.trainer import train

    print("Generating datasets and plotting\n")

    size = 100_000  # 100k points per plot

    datasets = {
        "Sequential": DatasetGenerator.generate_sequential(size),
        "Uniform": DatasetGenerator.generate_uniform(size, seed=0),
        "Mixed": DatasetGenerator.generate_mixed(size, seed=0),
        "Lognormal": DatasetGenerator.generate_lognormal(size, seed=0),
    }

    print("Datasets generated.")

    # show each plot
    def plot_data(keys, title):
        data = DatasetGenerator.training_data(keys)
        rmi = train(data, "linear,linear", 1024)
        plt.figure(figsize=(10, 4))
        plt.plot(keys, data.positions, '.', markersize=1, label="position")
        plt.plot(keys, rmi.predict_positions(keys), '-', linewidth=0.8, label="linear,linear bf=1024")
        plt.title(f"{title} ({len(keys):,} keys, max err {rmi.model_max_error})")
        plt.xlabel("Key Value")
        plt.ylabel("Position")
        plt.legend()
        plt.tight_layout()
        plt.show()

    for name, keys in datasets.items():
        plot_data(keys, name)

    print("\nAll plots displayed.")
