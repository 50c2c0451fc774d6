#!/usr/bin/env python3
"""
ir-curator - Command Line Interface

Main entry point for analyzing and curating a batch of IR metrics records.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import config
from ir_curator import export
from ir_curator.analysis import analyze_batch
from ir_curator.culling import request_cull
from ir_curator.profiles import LearnedProfileData
from ir_curator.redundancy import cluster_redundancy
from ir_curator.synthetic import generate_batch


def load_json(path: Path) -> Any:
    with open(path) as f:
        return json.load(f)


def process_batch(
    batch: Any,
    output_dir: Path,
    batch_name: str,
    params: dict,
    learned: Optional[LearnedProfileData] = None,
    verbose: bool = False
) -> bool:
    """
    Run the full pipeline on one batch.

    Parameters:
        batch: {filename: metrics} or list of records
        output_dir: Output directory for results
        batch_name: Prefix for output files
        params: Parameters dict (target, threshold, generate_plots)
        learned: Optional learned preference data
        verbose: Print progress messages

    Returns:
        True if successful, False otherwise
    """
    debug_logger = logging.getLogger('ir_curator.roles') if verbose else None

    try:
        if verbose:
            print(f"\nProcessing: {batch_name}")
            print("-" * 60)
            print("1. Normalizing features and classifying roles...")

        analysis = analyze_batch(batch, learned=learned, debug_logger=debug_logger)

        if verbose:
            print(f"   {len(analysis.irs)} IRs, {len(analysis.speaker_stats)} cohort(s)")
            print("2. Clustering redundant IRs...")

        cluster = cluster_redundancy(
            analysis.features(),
            threshold=params.get('threshold', config.REDUNDANCY_SIMILARITY_THRESHOLD)
        )

        cull = None
        target = params.get('target')
        if target is not None:
            if verbose:
                print(f"3. Culling to {target}...")
            cull = request_cull(analysis.cull_candidates(), target, cluster=cluster, learned=learned)

        if verbose:
            print("4. Exporting results...")

        created_files = export.export_all_outputs(
            analysis,
            output_dir,
            batch_name,
            cluster=cluster,
            cull=cull,
            generate_plots=params.get('generate_plots', True)
        )

        if verbose:
            print(f"   Created {len(created_files)} output files")

        export.print_batch_summary(analysis, cluster, cull, batch_name)
        return True

    except Exception as e:
        print(f"ERROR processing {batch_name}: {e}", file=sys.stderr)
        if verbose:
            import traceback
            traceback.print_exc()
        return False


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Classify, score and curate a batch of IR metrics records."
    )
    parser.add_argument('input', nargs='?', help="Batch JSON ({filename: metrics} or list of records)")
    parser.add_argument('-o', '--output', default='output', help="Output directory (default: output)")
    parser.add_argument('-t', '--target', type=int, default=None, help="Cull the batch to this many IRs")
    parser.add_argument('--threshold', type=float, default=config.REDUNDANCY_SIMILARITY_THRESHOLD,
                        help="Redundancy similarity threshold (default: %(default)s)")
    parser.add_argument('--learned', default=None, help="Learned preference JSON")
    parser.add_argument('--demo', action='store_true', help="Run on a generated synthetic batch")
    parser.add_argument('--no-plots', action='store_true', help="Skip plot generation")
    parser.add_argument('-v', '--verbose', action='store_true', help="Verbose output")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    if not args.demo and not args.input:
        parser.error("an input batch JSON is required unless --demo is given")

    learned = None
    if args.learned:
        try:
            learned = LearnedProfileData.from_payload(load_json(Path(args.learned)))
        except (OSError, json.JSONDecodeError) as e:
            print(f"ERROR reading learned data {args.learned}: {e}", file=sys.stderr)
            return 1

    if args.demo:
        batch = generate_batch(speakers=('V30', 'G12M'))
        batch_name = 'demo'
    else:
        input_path = Path(args.input)
        try:
            batch = load_json(input_path)
        except (OSError, json.JSONDecodeError) as e:
            print(f"ERROR reading {input_path}: {e}", file=sys.stderr)
            return 1
        if not isinstance(batch, (dict, list)):
            print(f"ERROR: {input_path} must hold an object or a list of records", file=sys.stderr)
            return 1
        batch_name = input_path.stem

    params = {
        'target': args.target,
        'threshold': args.threshold,
        'generate_plots': not args.no_plots,
    }

    ok = process_batch(batch, Path(args.output), batch_name, params, learned, args.verbose)
    return 0 if ok else 1


if __name__ == '__main__':
    sys.exit(main())
