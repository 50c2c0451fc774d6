"""
ir-curator - Analysis and Selection Modules

This package contains the core modules for IR batch curation:
- tonal: Metrics record normalization into TonalFeatures
- naming: Cohort, mic and position tokens from filenames
- speaker_stats: Per-cohort mean/std and z-scores
- roles: Musical role classification (rule cascade + context bias)
- profiles: Preference profile scoring and learned adjustments
- blend: Two-IR blend synthesis and partner ranking
- redundancy: Similarity matrix and Union-Find redundancy groups
- culling: Diversity-aware keep/cut optimizer
- analysis: Whole-batch pipeline
- session: Taste-check exploration history
- synthetic: Deterministic synthetic batches
- export: TSV, JSON and plot generation
"""

__version__ = "1.0.0"
