#!/usr/bin/env python
# coding: utf-8

"""
Pipeline Configuration
Centralized thresholds, column mappings and genome-build settings
"""

import copy
import json
import os
from datetime import datetime
from typing import Any, Dict, Optional

import pandas as pd


# ============================================================================
# DEFAULT CONFIGURATION
# ============================================================================

DEFAULT_PROBE_FILTER = {
    'sex_chromosomes': ['chrX', 'chrY'],
    'maf_threshold': 0.0,
    'drop_missing': True,
    'manifest_columns': {
        'probe_id': 'probeID',
        'chrom': 'CpG_chrm',
        'pos': 'CpG_beg',
        'mask': 'MASK_general',
        'maf': None,
    },
}

DEFAULT_DIFFERENTIAL = {
    'group_col': 'sample_type',
    'levels': ['Primary Tumor', 'Solid Tissue Normal'],
    'padj_threshold': 0.005,
    'delta_beta_threshold': 0.2,
    'shrink': 'smyth',
    'robust': True,
    'max_d0': 50.0,
}

DEFAULT_REGIONS = {
    'lambda_': 1000,
    'C': 2,
    'min_cpgs': 2,
    'fdr': 0.05,
    'pcutoff': 'fdr',
    'source_genome': 'hg19',
    'target_genome': 'hg38',
}

DEFAULT_ANNOTATION = {
    'genome': 'hg38',
    'promoter_upstream': 1000,
    'promoter_downstream': 0,
    'shore_width': 2000,
    'shelf_width': 2000,
    'promoter_type': None,  # defaults to '<genome>_genes_promoters'
}

DEFAULT_INTEGRATION = {
    'gene_col': 'gene_name',
    'lfc_col': 'log2FoldChange',
    'padj_col': 'padj',
    'expr_padj_threshold': 0.05,
    'correlation_method': 'spearman',
}

SAMPLE_TYPES = {
    '01': 'Primary Tumor',
    '02': 'Recurrent Tumor',
    '06': 'Metastatic',
    '10': 'Blood Derived Normal',
    '11': 'Solid Tissue Normal',
}

SECTIONS = (
    'probe_filter',
    'differential',
    'regions',
    'annotation',
    'integration',
)


# ============================================================================
# CONFIGURATION MANAGER
# ============================================================================

class PipelineConfig:
    """
    Configuration manager for the methylation pipeline.

    Holds one dictionary per pipeline stage and supports loading
    overrides from / saving the current state to JSON.
    """

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration manager.

        Parameters
        ----------
        config_file : str, optional
            Path to JSON configuration file
        """
        self.probe_filter = copy.deepcopy(DEFAULT_PROBE_FILTER)
        self.differential = copy.deepcopy(DEFAULT_DIFFERENTIAL)
        self.regions = copy.deepcopy(DEFAULT_REGIONS)
        self.annotation = copy.deepcopy(DEFAULT_ANNOTATION)
        self.integration = copy.deepcopy(DEFAULT_INTEGRATION)

        if config_file and os.path.exists(config_file):
            self.load_from_file(config_file)

    def load_from_file(self, filepath: str):
        """
        Load configuration overrides from JSON file.

        Unknown top-level keys are ignored; known sections are merged
        key by key into the current values.
        """
        with open(filepath, 'r') as f:
            config = json.load(f)

        for section in SECTIONS:
            if section in config:
                self.update(section, **config[section])

    def save_to_file(self, filepath: str):
        """Save current configuration to JSON file."""
        config = self.to_dict()
        config['last_updated'] = datetime.now().isoformat()

        with open(filepath, 'w') as f:
            json.dump(config, f, indent=2)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {section: copy.deepcopy(getattr(self, section)) for section in SECTIONS}

    def update(self, section: str, **values):
        """
        Override values of one section.

        Parameters
        ----------
        section : str
            One of 'probe_filter', 'differential', 'regions',
            'annotation', 'integration'
        **values
            Keys to replace. Nested dictionaries are merged.
        """
        if section not in SECTIONS:
            raise ValueError(
                f"Unknown config section: {section}. Use one of {list(SECTIONS)}"
            )
        target = getattr(self, section)
        for key, value in values.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                target[key].update(value)
            else:
                target[key] = value

    def get(self, section: str, key: str, default: Any = None) -> Any:
        if section not in SECTIONS:
            raise ValueError(f"Unknown config section: {section}")
        return getattr(self, section).get(key, default)

    def summary(self) -> pd.DataFrame:
        """Flat table of every setting (section, key, value)."""
        rows = []
        for section in SECTIONS:
            for key, value in getattr(self, section).items():
                rows.append({'section': section, 'key': key, 'value': value})
        return pd.DataFrame(rows)


# ============================================================================
# GLOBAL CONFIGURATION INSTANCE
# ============================================================================

_global_config = PipelineConfig()


def get_config() -> PipelineConfig:
    """
    Get global configuration instance.

    Examples
    --------
    >>> config = get_config()
    >>> config.differential['padj_threshold']
    0.005
    """
    return _global_config


def load_config(filepath: str):
    """Load JSON configuration overrides into the global instance."""
    if not filepath.endswith('.json'):
        raise ValueError("Config file must be JSON format")
    _global_config.load_from_file(filepath)


def reset_config():
    """Restore the global instance to the defaults."""
    global _global_config
    _global_config = PipelineConfig()
    return _global_config


def export_default_config(filepath: str):
    """
    Export default configuration template.

    Examples
    --------
    >>> export_default_config('pipeline.json')
    >>> # Edit thresholds, then load
    >>> load_config('pipeline.json')
    """
    if not filepath.endswith('.json'):
        raise ValueError("Filepath must end with .json")
    PipelineConfig().save_to_file(filepath)
