"""
Example usage of the IVFFlatIndex.
"""

import tempfile
import time
from pathlib import Path

import numpy as np

from ivfflat import CancellationToken, IVFFlatIndex, SearchCancelledError, brute_force_search


def main():
    print("=" * 60)
    print("IVF-Flat Index Usage Example")
    print("=" * 60)
    
    # Configuration
    dimension = 64
    n_vectors = 50000
    n_queries = 100
    k = 10
    
    print(f"\nConfiguration:")
    print(f"  Dimension: {dimension}")
    print(f"  Total vectors: {n_vectors:,}")
    print(f"  Queries: {n_queries}")
    print(f"  K: {k}")
    
    # Generate data
    print("\n1. Generating random vectors...")
    rng = np.random.RandomState(42)
    vectors = rng.randn(n_vectors, dimension).astype(np.float32)
    queries = rng.randn(n_queries, dimension).astype(np.float32)
    
    # Rule of thumb: 4*sqrt(n) clusters
    n_clusters = int(4 * np.sqrt(n_vectors))
    print(f"\n2. Building IVF-Flat index with {n_clusters} clusters...")
    
    index = IVFFlatIndex(
        dimension=dimension,
        metric="euclidean",
        cluster_count=n_clusters,
        n_probe=10,
        seed=42,
    )
    
    start = time.time()
    index.build(vectors)
    print(f"   Build time: {time.time() - start:.2f}s")
    print(f"   Layout: group_size={index.layout.group_size}, veclen={index.layout.veclen}")
    
    print("\n3. Cluster information:")
    info = index.get_cluster_info()
    sizes = [c["size"] for c in info["clusters"]]
    print(f"   Total clusters: {info['n_clusters']}")
    print(f"   Total vectors: {info['total_vectors']:,}")
    print(f"   Cluster size - min: {min(sizes)}, max: {max(sizes)}, "
          f"mean: {np.mean(sizes):.1f}")
    print(f"   Imbalance ratio: {info['imbalance_ratio']:.2f}")
    
    # Search benchmark with different n_probe
    print("\n4. Search benchmark (varying n_probe):")
    print(f"\n   {'n_probe':>8} | {'QPS':>8} | {'Latency':>10} | {'Recall@10':>10}")
    print("   " + "-" * 48)
    
    ground_truth = [
        set(brute_force_search(vectors, np.arange(n_vectors), q, k).ids.tolist())
        for q in queries
    ]
    
    for n_probe in [1, 5, 10, 20, 50]:
        index.set_n_probe(n_probe)
        
        hits = 0
        start = time.time()
        for q, truth in zip(queries, ground_truth):
            ids, _ = index.search(q, k=k)
            hits += len(truth & set(ids.tolist()))
        elapsed = time.time() - start
        
        qps = n_queries / elapsed
        latency_ms = elapsed / n_queries * 1000
        recall = hits / (k * n_queries)
        
        print(f"   {n_probe:>8} | {qps:>8.0f} | {latency_ms:>8.2f}ms | {recall:>10.1%}")
    
    # Batch search
    print("\n5. Batch search...")
    ids, distances = index.search_batch(queries[:5], k=3)
    for row_ids, row_distances in zip(ids, distances):
        pairs = ", ".join(f"{i}:{d:.3f}" for i, d in zip(row_ids, row_distances))
        print(f"   {pairs}")
    
    # Incremental add
    print("\n6. Adding vectors after build...")
    extra = rng.randn(1000, dimension).astype(np.float32)
    index.add(extra, np.arange(1_000_000, 1_001_000))
    ids, _ = index.search(extra[0], k=1)
    print(f"   Size: {len(index):,}, nearest to first new vector: {ids[0]}")
    
    # Cancellation
    print("\n7. Cancelled search...")
    token = CancellationToken()
    token.cancel()
    try:
        index.search(queries[0], k=k, cancel=token)
    except SearchCancelledError as e:
        print(f"   Raised: {e}")
    partial = index.search_result(queries[0], k=k, cancel=token, allow_partial=True)
    print(f"   Partial result: {partial}")
    
    # Stats
    print("\n8. Index statistics:")
    stats = index.stats()
    print(f"   Vectors: {stats['vector_count']:,}")
    print(f"   Memory: {stats['memory_mb']:.1f} MB")
    print(f"   Clusters: {stats['n_clusters']}")
    print(f"   n_probe: {stats['n_probe']}")
    
    # Serialization
    print("\n9. Save and load...")
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "index.ivf"
        n_bytes = index.save(path)
        restored = IVFFlatIndex.load(path)
        
        same = np.array_equal(index.search(queries[0], k=k)[0], restored.search(queries[0], k=k)[0])
        print(f"   Wrote {n_bytes / 1024 / 1024:.1f} MB")
        print(f"   Restored: {len(restored):,} vectors, same results={same}")
    
    print("\n" + "=" * 60)
    print("Example completed!")
    print("=" * 60)


if __name__ == "__main__":
    main()
