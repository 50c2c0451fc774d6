"""
Export Module

Generate the tab-separated summary, JSON outputs and plots for a batch.
The summary column order is fixed; downstream spreadsheets depend on it.
"""

import numpy as np
import json
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Any, Optional
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt

import config
from ir_curator.analysis import BatchAnalysis, IRAnalysis
from ir_curator.culling import CullRefusal, CullResult
from ir_curator.redundancy import ClusterResult
from ir_curator.tonal import BAND_KEYS, TonalFeatures, safe_number

SUMMARY_COLUMNS: List[str] = [
    'filename',
    'score',
    'role',
    'raw_role',
    'role_source',
    'centroid_hz',
    'band_centroid_hz',
    'tilt_db_per_oct',
    'rolloff_hz',
    'smooth_score',
    'hi_mid_mid_ratio',
] + [f'{k}_pct' for k in BAND_KEYS] + [
    'fizz_label',
    'notes',
]


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, np.bool_):
            return bool(obj)
        return super().default(obj)


def fizz_label(tf: TonalFeatures) -> str:
    """'fizzy', 'edgy' or 'smooth' from fizz and air percentages."""
    fizz = tf.fizz_percent
    air = tf.percent('air')
    for label in ('fizzy', 'edgy'):
        fizz_min, air_min = config.FIZZ_LABEL_THRESHOLDS[label]
        if fizz >= fizz_min or air >= air_min:
            return label
    return 'smooth'


def _notes(ir: IRAnalysis) -> str:
    notes = [ir.best.summary]
    if ir.features.smooth_is_proxy:
        notes.append('smoothness estimated from shape')
    if ir.role_source.startswith('anchor'):
        notes.append('cohort foundation anchor')
    return '; '.join(notes)


def build_summary_row(ir: IRAnalysis) -> Dict[str, Any]:
    tf = ir.features
    row = {
        'filename': ir.filename,
        'score': ir.score,
        'role': ir.role,
        'raw_role': ir.raw_role,
        'role_source': ir.role_source,
        'centroid_hz': round(safe_number(tf.spectral_centroid_hz)),
        'band_centroid_hz': round(safe_number(tf.band_centroid_hz)),
        'tilt_db_per_oct': round(safe_number(tf.tilt_db_per_oct), 2),
        'rolloff_hz': round(tf.rolloff_freq) if tf.rolloff_freq is not None else '',
        'smooth_score': round(safe_number(tf.smooth_score)),
        'hi_mid_mid_ratio': round(tf.hi_mid_mid_ratio, 2),
    }
    for k in BAND_KEYS:
        row[f'{k}_pct'] = round(tf.percent(k), 1)
    row['fizz_label'] = fizz_label(tf)
    row['notes'] = _notes(ir)
    return row


def build_summary_rows(batch: BatchAnalysis) -> List[Dict[str, Any]]:
    return [build_summary_row(ir) for ir in batch.irs]


def _cell(value: Any) -> str:
    return str(value).replace('\t', ' ').replace('\r', ' ').replace('\n', ' ')


def format_summary_tsv(rows: List[Dict[str, Any]], include_header: bool = True) -> str:
    """
    Render summary rows as tab-separated text in SUMMARY_COLUMNS order.

    Parameters:
        rows: Rows from build_summary_rows
        include_header: Emit the column-name line first

    Returns:
        TSV text ending with a newline
    """
    lines = []
    if include_header:
        lines.append('\t'.join(SUMMARY_COLUMNS))
    for row in rows:
        lines.append('\t'.join(_cell(row.get(col, '')) for col in SUMMARY_COLUMNS))
    return '\n'.join(lines) + '\n'


def create_results_json(
    batch: BatchAnalysis,
    cluster: Optional[ClusterResult] = None,
    cull: Optional[Any] = None
) -> Dict:
    """
    Create the batch results JSON.

    Parameters:
        batch: Batch analysis
        cluster: Redundancy clustering result
        cull: CullResult or CullRefusal

    Returns:
        Dict ready for JSON serialization
    """
    results = {
        'schema_version': config.SCHEMA_VERSION,
        'n_irs': len(batch.irs),
        'profiles': [
            {'name': p.name, 'source': p.source, 'target_tilt': p.target_tilt,
             'target_shape_db': p.target_shape_db}
            for p in batch.profiles
        ],
        'foundations': batch.foundations,
        'irs': [
            {
                **build_summary_row(ir),
                'matches': [asdict(m) for m in ir.matches],
            }
            for ir in batch.irs
        ],
    }

    if cluster is not None:
        results['redundancy'] = {
            'refused': cluster.refused,
            'reason': cluster.reason,
            'groups': [asdict(g) for g in cluster.groups],
        }

    if isinstance(cull, CullResult):
        results['cull'] = {
            'target': cull.target,
            'allocation': cull.allocation,
            'keep': [asdict(d) for d in cull.keep],
            'cut': [asdict(d) for d in cull.cut],
            'close_calls': [asdict(c) for c in cull.close_calls],
            'excluded': cull.excluded,
        }
    elif isinstance(cull, CullRefusal):
        results['cull'] = {'refused': True, **asdict(cull)}

    return results


def save_json(data: Dict, output_path: Path) -> None:
    """
    Save data as JSON with pretty printing.

    Parameters:
        data: Dictionary to save
        output_path: Path to output file
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        json.dump(data, f, indent=2, cls=NumpyEncoder)


def plot_similarity_matrix(
    cluster: ClusterResult,
    output_path: Path,
    title: str = "IR Similarity"
) -> None:
    """
    Heatmap of pairwise similarity with redundancy groups outlined by row labels.

    Parameters:
        cluster: Clustering result (must not be refused)
        output_path: Path to save plot
        title: Plot title
    """
    sim = cluster.similarity if cluster.similarity is not None else np.zeros((0, 0))
    n = sim.shape[0]

    fig, ax = plt.subplots(figsize=config.PLOT_FIGSIZE)
    im = ax.imshow(sim, cmap='viridis', vmin=0.0, vmax=1.0, interpolation='nearest')
    fig.colorbar(im, ax=ax, fraction=0.046, pad=0.04, label='Cosine similarity')

    grouped = {fn: g.id for g in cluster.groups for fn in g.members}
    labels = [f"{fn} [{grouped[fn]}]" if fn in grouped else fn for fn in cluster.filenames]

    ax.set_xticks(range(n))
    ax.set_yticks(range(n))
    ax.set_xticklabels(labels, rotation=90, fontsize=6)
    ax.set_yticklabels(labels, fontsize=6)
    ax.set_title(title, fontsize=12, fontweight='bold')

    plt.tight_layout()

    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_path, dpi=config.PLOT_DPI, bbox_inches='tight')
    plt.close(fig)


def plot_band_profiles(
    batch: BatchAnalysis,
    output_path: Path,
    title: str = "Band Shape by IR"
) -> None:
    """
    Plot every IR's dB shape with the active profile targets on top.

    Parameters:
        batch: Batch analysis
        output_path: Path to save plot
        title: Plot title
    """
    fig, ax = plt.subplots(figsize=(config.PLOT_FIGSIZE[0], 6))
    x = np.arange(len(BAND_KEYS))

    for ir in batch.irs:
        shape = [safe_number(ir.features.bands_shape_db.get(k)) for k in BAND_KEYS]
        ax.plot(x, shape, color='gray', alpha=0.35, linewidth=1)

    colors = ['red', 'blue', 'green', 'orange']
    for i, profile in enumerate(batch.profiles):
        target = [safe_number(profile.target_shape_db.get(k)) for k in BAND_KEYS]
        ax.plot(x, target, color=colors[i % len(colors)], linewidth=2.5,
                label=f"{profile.name} ({profile.source})")

    ax.set_xticks(x)
    ax.set_xticklabels(BAND_KEYS)
    ax.set_ylabel('Level re mid band (dB)', fontsize=10)
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.legend(loc='lower left', fontsize=9)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_path, dpi=config.PLOT_DPI, bbox_inches='tight')
    plt.close(fig)


def export_all_outputs(
    batch: BatchAnalysis,
    output_dir: Path,
    batch_name: str,
    cluster: Optional[ClusterResult] = None,
    cull: Optional[Any] = None,
    generate_plots: bool = True
) -> List[Path]:
    """
    Export all outputs: summary TSV, results JSON and plots.

    Parameters:
        batch: Batch analysis
        output_dir: Output directory path
        batch_name: Name used as the file prefix
        cluster: Redundancy clustering result
        cull: CullResult or CullRefusal
        generate_plots: Whether to generate plot files

    Returns:
        List of paths to created files
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    created_files = []

    summary_path = output_dir / f"{batch_name}_summary.tsv"
    summary_path.write_text(format_summary_tsv(build_summary_rows(batch)))
    created_files.append(summary_path)

    results_path = output_dir / f"{batch_name}_results.json"
    save_json(create_results_json(batch, cluster, cull), results_path)
    created_files.append(results_path)

    if generate_plots:
        bands_path = output_dir / f"{batch_name}_bands.png"
        plot_band_profiles(batch, bands_path, title=f"Band Shape: {batch_name}")
        created_files.append(bands_path)

        if cluster is not None and not cluster.refused:
            sim_path = output_dir / f"{batch_name}_similarity.png"
            plot_similarity_matrix(cluster, sim_path, title=f"IR Similarity: {batch_name}")
            created_files.append(sim_path)

    return created_files


def print_batch_summary(
    batch: BatchAnalysis,
    cluster: Optional[ClusterResult],
    cull: Optional[Any],
    batch_name: str
) -> None:
    """
    Print concise batch summary to console.

    Parameters:
        batch: Batch analysis
        cluster: Redundancy clustering result
        cull: CullResult or CullRefusal
        batch_name: Batch name
    """
    print(f"\n{'='*60}")
    print(f"Batch Summary: {batch_name}")
    print(f"{'='*60}")
    print(f"IRs analyzed: {len(batch.irs)} across {len(batch.speaker_stats)} cohort(s)")
    print(f"Profiles: {', '.join(f'{p.name} ({p.source})' for p in batch.profiles)}")

    roles: Dict[str, int] = {}
    for ir in batch.irs:
        roles[ir.role] = roles.get(ir.role, 0) + 1
    print("Roles: " + ', '.join(f"{role} x{n}" for role, n in sorted(roles.items())))

    if cluster is not None:
        if cluster.refused:
            print(f"\nRedundancy: {cluster.reason}")
        else:
            print(f"\nRedundancy groups: {len(cluster.groups)}")
            for g in cluster.groups:
                print(f"  {g.id}: {len(g.members)} IRs, avg sim {g.avg_similarity:.3f}")

    if isinstance(cull, CullRefusal):
        print(f"\nCull refused: {cull.reason}")
    elif isinstance(cull, CullResult):
        print(f"\nCull to {cull.target}: keep {len(cull.keep)}, cut {len(cull.cut)}")
        for d in cull.keep:
            print(f"  KEEP {d.filename} ({d.score:.1f}) - {d.justification}")
        if cull.close_calls:
            print(f"Close calls needing a decision: {len(cull.close_calls)}")
            for c in cull.close_calls:
                print(f"  {c.slot_id}: " + ' vs '.join(o.filename for o in c.options))

    print(f"{'='*60}\n")
