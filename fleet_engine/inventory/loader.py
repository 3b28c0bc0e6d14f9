"""Loads inventory.yaml into Node models."""

import logging
from pathlib import Path
from typing import List, Union

import yaml
from pydantic import ValidationError

from fleet_engine.core.errors import InventoryFileError
from fleet_engine.core.models import HARDWARE_CLASSES, Node, ResourceOverride
from fleet_engine.core.schemas import InventoryFile

logger = logging.getLogger(__name__)


def parse_inventory(data: dict) -> List[Node]:
    """Validate an inventory document and build unprovisioned nodes."""
    try:
        document = InventoryFile.model_validate(data or {})
    except ValidationError as e:
        raise InventoryFileError(f"Invalid inventory: {e}") from e

    domain = document.defaults.management_domain
    nodes = []
    for identifier, entry in document.nodes.items():
        management_host = entry.management_host
        if management_host is None and entry.hostname and domain:
            management_host = f"{entry.hostname}.{domain}"

        nodes.append(
            Node(
                identifier=identifier,
                hostname=entry.hostname,
                role=entry.role,
                hardware=HARDWARE_CLASSES[entry.hardware],
                management_host=management_host,
                resources=ResourceOverride(
                    cpu_limit=entry.resources.cpu_limit,
                    memory_limit_mb=entry.resources.memory_limit_mb,
                ),
            )
        )
    return nodes


def load_inventory(path: Union[str, Path]) -> List[Node]:
    path = Path(path)
    if not path.exists():
        raise InventoryFileError(f"Inventory file not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise InventoryFileError(f"Cannot parse {path}: {e}") from e

    nodes = parse_inventory(data)
    logger.info(f"[inventory] loaded {len(nodes)} node(s) from {path}")
    return nodes
