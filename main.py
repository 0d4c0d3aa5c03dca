from rmi_trainer.utils.data_loader import DatasetGenerator
from rmi_trainer.utils.logging import configure_logging
from rmi_trainer.benchmarks.benchmark_runner import Benchmark

def main():
    configure_logging()
    print("🧠 RMI training benchmark\n")
    size = 200_000
    print("#"*70)
    print(f"Testing {size:,} keys")
    print("#"*70)

    for name, keys in [
        (f"Uniform ({size:,})", DatasetGenerator.generate_uniform(size, seed=0)),
        (f"Lognormal ({size:,})", DatasetGenerator.generate_lognormal(size, seed=0)),
    ]:
        Benchmark.run(name, keys)

if __name__ == "__main__":
    main()
