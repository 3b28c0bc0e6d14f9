# fleet_engine/monitoring/targets.py
"""Scrape-target health as reported by the monitoring node's Prometheus."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

import requests

from fleet_engine.core.errors import AddressUnknown, MonitoringUnavailable
from fleet_engine.core.models import Role
from fleet_engine.inventory.service import Inventory
from fleet_engine.registry.templates.monitoring import PROMETHEUS_PORT

logger = logging.getLogger(__name__)

TARGETS_PATH = "/api/v1/targets"


@dataclass
class ScrapeTarget:
    job: str
    instance: str
    health: str
    last_error: str = ""

    @property
    def up(self) -> bool:
        return self.health == "up"


def parse_targets(payload: Dict[str, Any]) -> List[ScrapeTarget]:
    """Active targets from a `/api/v1/targets` response body."""
    if payload.get("status") != "success":
        raise MonitoringUnavailable(f"prometheus answered status {payload.get('status')!r}")

    targets = []
    for item in (payload.get("data") or {}).get("activeTargets") or []:
        labels = item.get("labels") or {}
        targets.append(
            ScrapeTarget(
                job=labels.get("job", item.get("scrapePool", "")),
                instance=labels.get("instance", item.get("scrapeUrl", "")),
                health=item.get("health", "unknown"),
                last_error=item.get("lastError") or "",
            )
        )
    return sorted(targets, key=lambda t: (t.job, t.instance))


class PrometheusTargets:
    """Reads active scrape targets from the monitoring node over the mesh."""

    def __init__(self, inventory: Inventory, settings, http_get: Callable = requests.get):
        self._inventory = inventory
        self._settings = settings
        self._http_get = http_get

    def url(self) -> str:
        monitors = self._inventory.list_nodes(Role.MONITORING)
        if not monitors:
            raise MonitoringUnavailable("no monitoring node in inventory")
        try:
            address = self._inventory.resolve_address(monitors[0].identifier)
        except AddressUnknown as e:
            raise MonitoringUnavailable(str(e)) from e
        return f"http://{address}:{PROMETHEUS_PORT}{TARGETS_PATH}"

    def fetch(self) -> List[ScrapeTarget]:
        """
        Active targets and their last scrape health.

        Raises:
            MonitoringUnavailable: no reachable monitoring node or bad answer
        """
        url = self.url()
        try:
            response = self._http_get(url, timeout=self._settings.http_timeout)
        except requests.RequestException as e:
            raise MonitoringUnavailable(f"{url}: {e}") from e

        if response.status_code != 200:
            raise MonitoringUnavailable(f"{url}: HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise MonitoringUnavailable(f"{url}: unparseable response: {e}") from e

        targets = parse_targets(payload)
        down = [t for t in targets if not t.up]
        logger.info(f"[monitoring] {len(targets)} scrape targets, {len(down)} down")
        return targets
