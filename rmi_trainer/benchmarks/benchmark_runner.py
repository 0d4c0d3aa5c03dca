import time
import numpy as np
from rmi_trainer.data.training_data import TrainingData
from rmi_trainer.optimizer.pareto import SearchSpace, find_pareto_efficient_configs
from rmi_trainer.training.rmi import TrainedRMI, rmi_size
from rmi_trainer.training.trainer import train


class Benchmark:
    """Benchmark tool for trained RMI configurations."""

    @staticmethod
    def measure_build_time(data: TrainingData, models: str, branching_factor: int):
        start = time.perf_counter()
        rmi = train(data, models, branching_factor)
        end = time.perf_counter()
        return rmi, (end - start) * 1000  # ms

    @staticmethod
    def measure_lookup_time(rmi: TrainedRMI, keys: np.ndarray, queries: np.ndarray):
        # Warmup
        for q in queries[:50]:
            rmi.search(keys, q)
        hits = 0
        start = time.perf_counter()
        for q in queries:
            hits += rmi.search(keys, q) is not None
        end = time.perf_counter()
        total_time = (end - start) * 1e9 / len(queries)  # ns per query
        return total_time, hits

    @staticmethod
    def run(dataset_name: str, keys: np.ndarray, num_queries: int = 1000,
            configs=(("linear,linear", 256), ("linear,linear", 4096), ("cubic,linear", 1024),
                     ("radix,linear", 1024), ("bradix,linear", 1024), ("linear,optimal_pla", 4096))):
        print(f"\n{'='*70}")
        print(f"Dataset: {dataset_name}  ({len(keys):,} keys)")
        print(f"{'='*70}")

        data = TrainingData.from_keys(keys)

        # Generate random search queries (half existing, half random)
        rng = np.random.default_rng(0)
        existing = rng.choice(keys, num_queries // 2)
        randoms = rng.integers(int(keys.min()), int(keys.max()) + 1, num_queries // 2, dtype=np.uint64)
        queries = np.concatenate([existing, randoms])
        rng.shuffle(queries)

        results = {}

        # ------------------------------------------------------------
        # FIXED CONFIGURATIONS
        # ------------------------------------------------------------
        print("\n-- Fixed configurations --")
        for models, bf in configs:
            rmi, build = Benchmark.measure_build_time(data, models, bf)
            lookup, hits = Benchmark.measure_lookup_time(rmi, keys, queries)
            size_kb = rmi_size(rmi) / 1024

            print(f"{models:<20} bf={bf:<6} | Build: {build:>9.2f} ms | "
                  f"Lookup: {lookup:>9.2f} ns | Size: {size_kb:>9.2f} KB | "
                  f"Avg log2 err: {rmi.model_avg_log2_error:>6.3f} | Max err: {rmi.model_max_error:<6} | "
                  f"Hits: {hits}/{num_queries} | Bounded: {rmi.last_layer_reports_error}")

            results[f"{models}_{bf}"] = {
                "build_ms": build,
                "lookup_ns": lookup,
                "size_bytes": rmi_size(rmi),
                "avg_log2_error": rmi.model_avg_log2_error,
            }

        # ------------------------------------------------------------
        # PARETO SEARCH
        # ------------------------------------------------------------
        print("\n-- Pareto frontier --")
        space = SearchSpace(
            (("linear", "cubic", "radix", "bradix"), ("linear", "linear_spline")),
            (64, 256, 1024, 4096),
        )
        for cand in find_pareto_efficient_configs(data, space, time_budget_s=60):
            print(f"{cand.config:<30} | Size: {cand.size_bytes / 1024:>9.2f} KB | "
                  f"Avg log2 err: {cand.error:>6.3f} | Max err: {cand.max_error}")

        return results


if __name__ == "__main__":
    n = 50_000  # number of keys to test
    keys = np.sort(np.random.default_rng(0).integers(0, 1_000_000_000, n, dtype=np.uint64))
    Benchmark.run("Uniform_50k", keys)
