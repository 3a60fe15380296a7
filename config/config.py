import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

PROOF_BACKENDS = ("development", "snarkjs")
STATE_TREE_BACKENDS = ("memory", "rpc")


@dataclass
class ProofBackendConfig:
    backend: str = "development"
    build_dir: Path = field(default_factory=lambda: Path("circuits/build"))
    node_binary: str = "node"
    snarkjs_binary: str = "snarkjs"
    proof_timeout: Optional[int] = 120

    def __post_init__(self):
        self.build_dir = Path(self.build_dir)
        if self.backend not in PROOF_BACKENDS:
            raise ValueError(f"Unknown proof backend '{self.backend}', "
                             f"expected one of {PROOF_BACKENDS}")


@dataclass
class StateTreeConfig:
    backend: str = "memory"
    rpc_url: str = "http://127.0.0.1:8784"
    timeout: float = 10.0
    depth: int = 32

    def __post_init__(self):
        if self.backend not in STATE_TREE_BACKENDS:
            raise ValueError(f"Unknown state tree backend '{self.backend}', "
                             f"expected one of {STATE_TREE_BACKENDS}")


@dataclass
class VotingConfig:
    proof_workers: int = 4
    num_voters: int = 5
    num_options: int = 3
    voting_period: int = 3600
    claim_period: int = 3600
    protocol_fee_bps: int = 100
    quorum_threshold: int = 0


@dataclass
class SystemConfig:
    proof_config: ProofBackendConfig = field(default_factory=ProofBackendConfig)
    tree_config: StateTreeConfig = field(default_factory=StateTreeConfig)
    voting_config: VotingConfig = field(default_factory=VotingConfig)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    log_level: str = "INFO"
    enable_benchmarking: bool = True

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

    def ensure_directories(self):
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.results_dir.mkdir(parents=True, exist_ok=True)


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    if not config_path.exists():
        return SystemConfig()

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load config file {config_path}: {e}; using defaults")
        return SystemConfig()

    proof_data = config_data.get('proof_backend', {})
    proof_config = ProofBackendConfig(
        backend=proof_data.get('backend', 'development'),
        build_dir=Path(proof_data.get('build_dir', 'circuits/build')),
        node_binary=proof_data.get('node_binary', 'node'),
        snarkjs_binary=proof_data.get('snarkjs_binary', 'snarkjs'),
        proof_timeout=proof_data.get('proof_timeout', 120)
    )

    tree_data = config_data.get('state_tree', {})
    tree_config = StateTreeConfig(
        backend=tree_data.get('backend', 'memory'),
        rpc_url=tree_data.get('rpc_url', 'http://127.0.0.1:8784'),
        timeout=tree_data.get('timeout', 10.0),
        depth=tree_data.get('depth', 32)
    )

    voting_data = config_data.get('voting', {})
    voting_config = VotingConfig(
        proof_workers=voting_data.get('proof_workers', 4),
        num_voters=voting_data.get('num_voters', 5),
        num_options=voting_data.get('num_options', 3),
        voting_period=voting_data.get('voting_period', 3600),
        claim_period=voting_data.get('claim_period', 3600),
        protocol_fee_bps=voting_data.get('protocol_fee_bps', 100),
        quorum_threshold=voting_data.get('quorum_threshold', 0)
    )

    return SystemConfig(
        proof_config=proof_config,
        tree_config=tree_config,
        voting_config=voting_config,
        log_dir=Path(config_data.get('log_dir', 'logs')),
        results_dir=Path(config_data.get('results_dir', 'results')),
        log_level=config_data.get('log_level', 'INFO'),
        enable_benchmarking=config_data.get('enable_benchmarking', True)
    )


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")

    config_data = {
        'proof_backend': {
            'backend': config.proof_config.backend,
            'build_dir': str(config.proof_config.build_dir),
            'node_binary': config.proof_config.node_binary,
            'snarkjs_binary': config.proof_config.snarkjs_binary,
            'proof_timeout': config.proof_config.proof_timeout
        },
        'state_tree': {
            'backend': config.tree_config.backend,
            'rpc_url': config.tree_config.rpc_url,
            'timeout': config.tree_config.timeout,
            'depth': config.tree_config.depth
        },
        'voting': {
            'proof_workers': config.voting_config.proof_workers,
            'num_voters': config.voting_config.num_voters,
            'num_options': config.voting_config.num_options,
            'voting_period': config.voting_config.voting_period,
            'claim_period': config.voting_config.claim_period,
            'protocol_fee_bps': config.voting_config.protocol_fee_bps,
            'quorum_threshold': config.voting_config.quorum_threshold
        },
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'log_level': config.log_level,
        'enable_benchmarking': config.enable_benchmarking
    }

    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
    logger.info(f"Configuration saved to {config_path}")
