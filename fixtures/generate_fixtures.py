#!/usr/bin/env python3
"""Generate deterministic synthetic IR batch fixtures.

Writes batches of metrics records (the same layout the upstream metrics
provider emits) as stable JSON files, with a manifest of their hashes.
"""

import hashlib
import json
from pathlib import Path

from ir_curator.synthetic import generate_batch

OUTPUT_DIR = Path(__file__).parent / "synthetic_batches"


def write_batch(filepath: Path, batch: dict) -> str:
    """Write batch JSON and return SHA256 of file bytes."""
    with open(filepath, 'w') as f:
        json.dump(batch, f, indent=2, sort_keys=False)
    with open(filepath, 'rb') as f:
        return hashlib.sha256(f.read()).hexdigest()


def main():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

    fixtures = [
        ("single_cohort", lambda: generate_batch(speakers=('V30',), duplicates=2, seed=7)),
        ("two_cohorts", lambda: generate_batch(speakers=('V30', 'G12M'), duplicates=1, seed=11)),
        ("no_duplicates", lambda: generate_batch(speakers=('CREAMBACK',), duplicates=0, seed=3)),
    ]

    manifest_entries = []

    for name, generator in fixtures:
        batch = generator()
        filepath = OUTPUT_DIR / f"{name}.json"
        sha256 = write_batch(filepath, batch)

        print(f"{name}.json: {sha256}")

        manifest_entries.append({
            "name": name,
            "filename": f"{name}.json",
            "n_irs": len(batch),
            "sha256_bytes": sha256,
        })

    manifest = {
        "version": "1.0",
        "fixtures": manifest_entries,
    }

    manifest_path = OUTPUT_DIR / "fixtures_manifest.json"
    with open(manifest_path, 'w') as f:
        json.dump(manifest, f, indent=2)

    print(f"\nManifest written to: {manifest_path}")


if __name__ == "__main__":
    main()
