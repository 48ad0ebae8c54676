from __future__ import annotations

import argparse
from pathlib import Path

import numpy as np

from recallgate.dataset import write_fvecs, write_ivecs
from recallgate.ground_truth import compute_ground_truth
from recallgate.synthetic import DISTRIBUTIONS, generate_synthetic
from recallgate.types import SyntheticSpec


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a synthetic dataset with exact neighbors for recallgate scenarios."
    )
    parser.add_argument("--output", required=True, help="Output .npz path, or <prefix>_base.fvecs for TEXMEX layout")
    parser.add_argument("--train-size", type=int, default=100_000)
    parser.add_argument("--query-size", type=int, default=1_000)
    parser.add_argument("--dim", type=int, default=128)
    parser.add_argument("--distribution", choices=DISTRIBUTIONS, default="gaussian_clustered")
    parser.add_argument("--num-clusters", type=int, default=None)
    parser.add_argument("--sparsity", type=float, default=0.8)
    parser.add_argument("--query-noise", type=float, default=None, help="Build queries as noisy copies of corpus rows.")
    parser.add_argument("--metric", default="euclidean", choices=["euclidean", "angular", "dot"])
    parser.add_argument("--k", type=int, default=100, help="Neighbors stored per query")
    parser.add_argument("--seed", type=int, default=42)
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)

    spec = SyntheticSpec(
        n=args.train_size,
        dim=args.dim,
        n_queries=args.query_size,
        distribution=args.distribution,
        seed=args.seed,
        num_clusters=args.num_clusters,
        sparsity=args.sparsity,
        query_noise=args.query_noise,
    )
    bundle = generate_synthetic(spec, metric=args.metric)
    truth = compute_ground_truth(bundle.vectors, bundle.queries, args.k, bundle.metric)
    neighbors = np.stack([np.asarray(row.ids, dtype=np.int64) for row in truth])

    if output.suffix == ".fvecs":
        if not output.stem.endswith("_base"):
            raise SystemExit("fvecs output must be named <prefix>_base.fvecs")
        prefix = output.stem[: -len("_base")]
        write_fvecs(output, bundle.vectors)
        write_fvecs(output.with_name(f"{prefix}_query.fvecs"), bundle.queries)
        write_ivecs(output.with_name(f"{prefix}_groundtruth.ivecs"), neighbors)
    else:
        np.savez(
            output,
            train=bundle.vectors,
            queries=bundle.queries,
            neighbors=neighbors,
            distance=bundle.metric,
        )

    print(f"written: {output.resolve()}")
    print(f"train={bundle.vectors.shape}, queries={bundle.queries.shape}, neighbors={neighbors.shape}, metric={bundle.metric}")


if __name__ == "__main__":
    main()
