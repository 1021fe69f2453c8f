"""Markdown and HTML normalization for Azure DevOps wiki PDF exports."""

from .core import (
    PipelineConfig,
    export_pages,
    insert_table_captions,
    normalize_markdown,
    normalize_markdown_pages,
    run_pipeline,
    setup_logging,
)
from .hyphenation import HyphenationConfig, insert_soft_hyphens
from .version import __version__

__all__ = [
    "HyphenationConfig",
    "PipelineConfig",
    "__version__",
    "export_pages",
    "insert_soft_hyphens",
    "insert_table_captions",
    "normalize_markdown",
    "normalize_markdown_pages",
    "run_pipeline",
    "setup_logging",
]
