"""
Proof Backends

The voting protocol treats the proof system as an external collaborator with
two calls: ``prove`` and ``verify``. ``SnarkjsProofBackend`` drives compiled
Groth16 circuits through node and snarkjs; ``DevelopmentProofBackend`` binds
the public inputs with a keyed digest so the protocol can run end to end
without circuit artifacts.
"""

import hashlib
import hmac
import json
import logging
import os
import subprocess
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .circuit_inputs import ProofInputBundle, SignalValue
from .errors import ProofBackendUnavailable, ProofGenerationError

logger = logging.getLogger(__name__)

Signals = Sequence[Tuple[str, SignalValue]]


class ProofBackend(ABC):
    """Interface of the proof system collaborator"""

    @abstractmethod
    def prove(self, circuit_id: str, public_inputs: Signals, private_inputs: Signals) -> bytes:
        """Produce a proof over ordered public and private signals"""

    @abstractmethod
    def verify(self, circuit_id: str, proof: bytes, public_inputs: Sequence[int]) -> bool:
        """Check a proof against the flat public input vector"""

    def prove_bundle(self, bundle: ProofInputBundle) -> bytes:
        return self.prove(bundle.circuit_id, bundle.public_inputs, bundle.private_inputs)


def _flatten(signals: Signals) -> List[int]:
    return ProofInputBundle._flatten(list(signals))

# ============================================================================
# SNARKJS BACKEND
# ============================================================================


class SnarkjsProofBackend(ProofBackend):
    """Groth16 proofs through compiled circuit artifacts.

    Artifacts for circuit ``voting/<name>`` are expected under
    ``<build_dir>/<name>/``: ``<name>_js/generate_witness.js``,
    ``<name>_js/<name>.wasm``, ``<name>.zkey`` and ``<name>_vkey.json``.
    """

    def __init__(self, build_dir: Path, node_binary: str = "node",
                 snarkjs_binary: str = "snarkjs", timeout: Optional[float] = None):
        self.build_dir = Path(build_dir)
        self.node_binary = node_binary
        self.snarkjs_binary = snarkjs_binary
        self.timeout = timeout

    def _circuit_dir(self, circuit_id: str) -> Tuple[Path, str]:
        name = circuit_id.split("/")[-1]
        circuit_dir = (self.build_dir / name).resolve()
        if not circuit_dir.is_relative_to(self.build_dir.resolve()):
            raise ValueError(f"Circuit id {circuit_id} escapes the build directory")
        return circuit_dir, name

    def _run(self, cmd: List[str], what: str) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise ProofBackendUnavailable(f"{what}: {cmd[0]} not found") from e
        except subprocess.TimeoutExpired as e:
            raise ProofBackendUnavailable(f"{what} timed out after {self.timeout}s") from e

    def prove(self, circuit_id: str, public_inputs: Signals, private_inputs: Signals) -> bytes:
        start_time = time.time()
        circuit_dir, name = self._circuit_dir(circuit_id)
        bundle = ProofInputBundle(circuit_id, list(public_inputs), list(private_inputs))

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)

            witness_file = temp_path / "input.json"
            with open(witness_file, 'w') as f:
                json.dump(bundle.to_witness(), f)

            wtns_file = temp_path / "witness.wtns"
            cmd = [
                self.node_binary,
                str(circuit_dir / f"{name}_js" / "generate_witness.js"),
                str(circuit_dir / f"{name}_js" / f"{name}.wasm"),
                str(witness_file),
                str(wtns_file),
            ]
            result = self._run(cmd, "Witness generation")
            if result.returncode != 0:
                raise ProofGenerationError(f"Witness generation failed: {result.stderr}")

            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"
            cmd = [
                self.snarkjs_binary, 'groth16', 'prove',
                str(circuit_dir / f"{name}.zkey"),
                str(wtns_file),
                str(proof_file),
                str(public_file),
            ]
            result = self._run(cmd, "Proof generation")
            if result.returncode != 0:
                raise ProofGenerationError(f"Proof generation failed: {result.stderr}")

            proof = json.loads(proof_file.read_text())
            public_signals = json.loads(public_file.read_text())

        expected = [str(v) for v in bundle.public_values()]
        if public_signals != expected:
            raise ProofGenerationError(
                f"Public signals of {circuit_id} do not match the declared inputs")

        logger.info(f"Generated proof for {circuit_id} in {time.time() - start_time:.2f}s")
        return json.dumps(proof, sort_keys=True).encode()

    def verify(self, circuit_id: str, proof: bytes, public_inputs: Sequence[int]) -> bool:
        start_time = time.time()
        circuit_dir, name = self._circuit_dir(circuit_id)

        with tempfile.TemporaryDirectory() as temp_dir:
            temp_path = Path(temp_dir)
            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"
            proof_file.write_bytes(proof)
            public_file.write_text(json.dumps([str(v) for v in public_inputs]))

            cmd = [
                self.snarkjs_binary, 'groth16', 'verify',
                str(circuit_dir / f"{name}_vkey.json"),
                str(public_file),
                str(proof_file),
            ]
            result = self._run(cmd, "Proof verification")

        is_valid = result.returncode == 0 and "OK!" in result.stdout
        logger.info(
            f"Verified {circuit_id} proof in {time.time() - start_time:.3f}s: "
            f"{'valid' if is_valid else 'invalid'}")
        return is_valid

# ============================================================================
# DEVELOPMENT BACKEND
# ============================================================================


class DevelopmentProofBackend(ProofBackend):
    """Keyed digest over the circuit id and public vector.

    Verification succeeds exactly when the declared public inputs are the ones
    that were proven, which is enough to exercise every protocol path. It
    proves nothing about the private inputs and must not be used in
    production.
    """

    def __init__(self, secret: Optional[bytes] = None):
        self._secret = secret or os.urandom(32)

    def _digest(self, circuit_id: str, public_values: Sequence[int]) -> bytes:
        message = circuit_id.encode() + b"".join(
            int(v).to_bytes(32, 'big') for v in public_values)
        return hmac.new(self._secret, message, hashlib.sha256).digest()

    def prove(self, circuit_id: str, public_inputs: Signals, private_inputs: Signals) -> bytes:
        if not private_inputs:
            raise ProofGenerationError(f"No private inputs supplied for {circuit_id}")
        return self._digest(circuit_id, _flatten(public_inputs))

    def verify(self, circuit_id: str, proof: bytes, public_inputs: Sequence[int]) -> bool:
        return hmac.compare_digest(proof, self._digest(circuit_id, public_inputs))
