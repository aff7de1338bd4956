"""Deployment bookkeeping for router and module contracts.

Deployed addresses are recorded as JSON:

    {contractName: {version: {chainId: address}}}

The record is read before deploying (to refuse duplicates) and written
after every successful deployment. Batches are best-effort: a failing
target is logged and the batch moves on.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Protocol, Sequence

from orderrouter.models.order import ZERO_ADDRESS, ZERO_HASH
from orderrouter.util.errors import DeploymentError

logger = logging.getLogger(__name__)


class Deployer(Protocol):
    chain_id: int

    def deploy(self, contract_name: str, version: str, args: Sequence[Any]) -> str:
        ...

    def verify(self, address: str, args: Sequence[Any], contract_name: str) -> None:
        ...


class DeployTarget(NamedTuple):
    contract_name: str
    version: str
    args: List[Any]


class DeploymentRegistry:
    """JSON record of deployed contract addresses."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, Dict[str, Dict[str, str]]]:
        if not self.path.exists():
            return {}
        return json.loads(self.path.read_text(encoding="utf-8"))

    def read(self, contract_name: str, version: str, chain_id: int) -> Optional[str]:
        return self._load().get(contract_name, {}).get(version, {}).get(str(chain_id))

    def write(self, address: str, contract_name: str, version: str, chain_id: int) -> None:
        deployments = self._load()
        versions = deployments.setdefault(contract_name, {})
        versions.setdefault(version, {})[str(chain_id)] = address.lower()
        self.path.write_text(json.dumps(deployments, indent=2), encoding="utf-8")
        logger.info(
            "Version %s of contract %s deployed on chain %d at address %s",
            version,
            contract_name,
            chain_id,
            address.lower(),
        )


def _invalid_arg(arg: Any) -> bool:
    if not arg:
        return True
    return isinstance(arg, str) and arg.lower() in (ZERO_ADDRESS, ZERO_HASH)


def deploy_contract(
    deployer: Deployer,
    registry: DeploymentRegistry,
    contract_name: str,
    version: str,
    args: Sequence[Any],
) -> str:
    """Deploy once per (contract, version, chain) and record the address."""
    if any(_invalid_arg(arg) for arg in args):
        raise DeploymentError("Invalid args")
    if registry.read(contract_name, version, deployer.chain_id):
        raise DeploymentError(
            f"Version {version} of {contract_name} already deployed on chain {deployer.chain_id}"
        )
    address = deployer.deploy(contract_name, version, args)
    registry.write(address, contract_name, version, deployer.chain_id)
    return address.lower()


def verify_contract(
    deployer: Deployer,
    registry: DeploymentRegistry,
    contract_name: str,
    version: str,
    args: Sequence[Any],
) -> None:
    address = registry.read(contract_name, version, deployer.chain_id)
    if not address:
        raise DeploymentError("No deployment found")
    deployer.verify(address, args, contract_name)


def run_best_effort(
    deployer: Deployer,
    registry: DeploymentRegistry,
    targets: Sequence[DeployTarget],
    verify_delay: float = 30.0,
) -> Dict[str, Optional[str]]:
    """Deploy and verify each target; failures are logged, never raised.

    Returns contract name -> deployed address (None when deploy or verify failed).
    """
    deployed: Dict[str, Optional[str]] = {}
    for target in targets:
        try:
            address = deploy_contract(
                deployer, registry, target.contract_name, target.version, target.args
            )
            if verify_delay:
                time.sleep(verify_delay)
            verify_contract(
                deployer, registry, target.contract_name, target.version, target.args
            )
        except Exception as e:
            logger.error("Failed to deploy/verify %s: %s", target.contract_name, e)
            deployed[target.contract_name] = None
            continue
        deployed[target.contract_name] = address
    return deployed
