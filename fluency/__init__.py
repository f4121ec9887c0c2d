"""
fluency-core: adaptive language-practice engine.

Packages:
- core: models, errors, text normalization, configuration resolution
- learning: adaptation engine and its components
- study: Triple Helix scheduling and round assembly
- delivery: cycle orchestration and the session loop
"""

__version__ = "0.1.0"
