"""Configuration management for the ballot protocol."""

from .config import (
    SystemConfig, ProofBackendConfig, StateTreeConfig, VotingConfig, load_config, save_config
)

__all__ = ['SystemConfig', 'ProofBackendConfig', 'StateTreeConfig', 'VotingConfig',
           'load_config', 'save_config']
