"""Node-level store of ENIs, their secondary IPv4 addresses and pod assignments."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from eniipam.metrics import REGISTRY, Gauge

log = logging.getLogger(__name__)

# An ENI younger than this is never freed.
MIN_LIFE_TIME = 60.0
# An ENI is not freed if one of its addresses was released to the pool this recently.
ADDRESS_ENI_COOLING_PERIOD = 60.0
# An address released by one pod is not handed to another pod this soon.
ADDRESS_COOLING_PERIOD = 30.0

_NEVER = -math.inf

ENIS = REGISTRY.register(Gauge("awscni_eni_allocated", "The number of ENIs allocated"))
TOTAL_IPS = REGISTRY.register(
    Gauge("awscni_total_ip_addresses", "The total number of IP addresses")
)
ASSIGNED_IPS = REGISTRY.register(
    Gauge("awscni_assigned_ip_addresses", "The number of IP addresses assigned to pods")
)


class DataStoreError(Exception):
    """Base class for data store failures."""

    default_message = "datastore: error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class DuplicateENIError(DataStoreError):
    """The ENI is already in the data store."""

    default_message = "data store: duplicate ENI"


class DuplicateIPError(DataStoreError):
    """The address is already known on that ENI."""

    default_message = "datastore: duplicated IP"


class UnknownIPError(DataStoreError):
    """The address is not known on that ENI."""

    default_message = "datastore: unknown IP"


class IPInUseError(DataStoreError):
    """The address is assigned to a pod and cannot be removed."""

    default_message = "datastore: IP is used and can not be deleted"


class ENIInUseError(DataStoreError):
    """The ENI still has addresses assigned to pods."""

    default_message = "datastore: ENI is used and can not be deleted"


class UnknownENIError(DataStoreError):
    """The ENI is not in the data store."""

    default_message = "datastore: unknown ENI"


class UnknownPodError(DataStoreError):
    """No pod matches the given name, namespace and container."""

    default_message = "datastore: unknown pod"


class UnknownPodIPError(DataStoreError):
    """The pod's recorded address is not assigned on any ENI."""

    default_message = "datastore: pod using unknown IP address"


class NoAvailableIPError(DataStoreError):
    """No free address can be handed out."""

    default_message = "datastore: no available IP addresses"


class PodIPConflictError(DataStoreError):
    """The pod already holds a different address."""

    default_message = "datastore; invalid pod with multiple IP addresses"


@dataclass
class PodInfo:
    """A pod as seen by the IP manager."""

    name: str = ""
    namespace: str = ""
    container: str = ""
    ip: str = ""
    uid: str = ""

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.name, self.namespace, self.container)


@dataclass
class AddressInfo:
    """One secondary address of an ENI."""

    address: str
    assigned: bool = False
    unassigned_time: float = _NEVER


@dataclass
class ENIIPPool:
    """An ENI and the secondary addresses it carries."""

    id: str
    device_number: int
    is_primary: bool = False
    assigned_ipv4_addresses: int = 0
    ipv4_addresses: dict[str, AddressInfo] = field(default_factory=dict)
    create_time: float = _NEVER
    last_unassigned_time: float = _NEVER

    def to_dict(self) -> dict[str, Any]:
        """Return the introspection form of the pool."""
        return {
            "IsPrimary": self.is_primary,
            "ID": self.id,
            "DeviceNumber": self.device_number,
            "AssignedIPv4Addresses": self.assigned_ipv4_addresses,
            "IPv4Addresses": {
                ip: {"Assigned": info.assigned} for ip, info in self.ipv4_addresses.items()
            },
        }


@dataclass(frozen=True)
class PodIPInfo:
    """The address of a pod and the device number of its ENI."""

    ip: str
    device_number: int

    def to_dict(self) -> dict[str, Any]:
        """Return the introspection form."""
        return {"IP": self.ip, "DeviceNumber": self.device_number}


@dataclass
class ENIInfos:
    """A snapshot of all ENIs and address counts."""

    total_ips: int
    assigned_ips: int
    eni_ip_pools: dict[str, ENIIPPool]

    def to_dict(self) -> dict[str, Any]:
        """Return the introspection form."""
        return {
            "TotalIPs": self.total_ips,
            "AssignedIPs": self.assigned_ips,
            "ENIIPPools": {eni: pool.to_dict() for eni, pool in self.eni_ip_pools.items()},
        }


class DataStore:
    """Thread-safe record of ENIs, addresses and which pod holds which address."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._total = 0
        self._assigned = 0
        self._eni_ip_pools: dict[str, ENIIPPool] = {}
        self._pods_ip: dict[tuple[str, str, str], PodIPInfo] = {}

    def add_eni(self, eni_id: str, device_number: int, is_primary: bool) -> None:
        """Add an ENI with no addresses."""
        with self._lock:
            if eni_id in self._eni_ip_pools:
                raise DuplicateENIError()
            self._eni_ip_pools[eni_id] = ENIIPPool(
                id=eni_id,
                device_number=device_number,
                is_primary=is_primary,
                create_time=self._clock(),
            )
            ENIS.set(len(self._eni_ip_pools))
            log.debug("DataStore added ENI %s", eni_id)

    def add_eni_ipv4_address(self, eni_id: str, ipv4: str) -> None:
        """Add a secondary address to a known ENI."""
        with self._lock:
            pool = self._eni_ip_pools.get(eni_id)
            if pool is None:
                raise UnknownENIError("add ENI's IP to datastore: unknown ENI")
            if ipv4 in pool.ipv4_addresses:
                raise DuplicateIPError()
            self._total += 1
            TOTAL_IPS.set(self._total)
            pool.ipv4_addresses[ipv4] = AddressInfo(address=ipv4)
            log.info("Added ENI(%s)'s IP %s to datastore", eni_id, ipv4)

    def del_eni_ipv4_address(self, eni_id: str, ipv4: str) -> None:
        """Remove an unassigned secondary address from an ENI."""
        with self._lock:
            pool = self._eni_ip_pools.get(eni_id)
            if pool is None:
                raise UnknownENIError()
            info = pool.ipv4_addresses.get(ipv4)
            if info is None:
                raise UnknownIPError()
            if info.assigned:
                raise IPInUseError()
            self._total -= 1
            TOTAL_IPS.set(self._total)
            del pool.ipv4_addresses[ipv4]
            log.info("Deleted ENI(%s)'s IP %s from datastore", eni_id, ipv4)

    def assign_pod_ipv4_address(self, pod: PodInfo) -> PodIPInfo:
        """Give the pod an address; if ``pod.ip`` is set, claim that address."""
        with self._lock:
            existing = self._pods_ip.get(pod.key)
            if existing is not None:
                if pod.ip and existing.ip == pod.ip:
                    log.info(
                        "duplicate pod assign for IP %s, name %s, namespace %s, container %s",
                        pod.ip, pod.name, pod.namespace, pod.container,
                    )
                    return existing
                log.error(
                    "current IP %s is changed to IP %s for pod(name %s, namespace %s, container %s)",
                    existing.ip, pod.ip, pod.name, pod.namespace, pod.container,
                )
                raise PodIPConflictError()
            return self._assign_unlocked(pod)

    def _assign_unlocked(self, pod: PodInfo) -> PodIPInfo:
        now = self._clock()
        for pool in self._eni_ip_pools.values():
            if not pod.ip and len(pool.ipv4_addresses) == pool.assigned_ipv4_addresses:
                continue
            for addr in pool.ipv4_addresses.values():
                if pod.ip == addr.address:
                    # Reclaim an address a running pod already uses.
                    if not addr.assigned:
                        self._mark_assigned(pool, addr)
                    return self._record(pod, addr, pool)
                if (
                    not addr.assigned
                    and not pod.ip
                    and now - addr.unassigned_time > ADDRESS_COOLING_PERIOD
                ):
                    self._mark_assigned(pool, addr)
                    return self._record(pod, addr, pool)
        log.info("DataStore has no available IP addresses")
        raise NoAvailableIPError()

    def _mark_assigned(self, pool: ENIIPPool, addr: AddressInfo) -> None:
        self._assigned += 1
        pool.assigned_ipv4_addresses += 1
        addr.assigned = True
        ASSIGNED_IPS.set(self._assigned)

    def _record(self, pod: PodInfo, addr: AddressInfo, pool: ENIIPPool) -> PodIPInfo:
        info = PodIPInfo(ip=addr.address, device_number=pool.device_number)
        self._pods_ip[pod.key] = info
        log.info(
            "Assign IP %s to pod (name %s, namespace %s, container %s)",
            addr.address, pod.name, pod.namespace, pod.container,
        )
        return info

    def unassign_pod_ipv4_address(self, pod: PodInfo) -> PodIPInfo:
        """Release the pod's address back to the pool and return it."""
        with self._lock:
            recorded = self._pods_ip.get(pod.key)
            if recorded is None:
                log.warning(
                    "Failed to find pod %s namespace %s container %s",
                    pod.name, pod.namespace, pod.container,
                )
                raise UnknownPodError()
            for pool in self._eni_ip_pools.values():
                addr = pool.ipv4_addresses.get(recorded.ip)
                if addr is not None and addr.assigned:
                    addr.assigned = False
                    self._assigned -= 1
                    ASSIGNED_IPS.set(self._assigned)
                    pool.assigned_ipv4_addresses -= 1
                    now = self._clock()
                    addr.unassigned_time = now
                    pool.last_unassigned_time = now
                    del self._pods_ip[pod.key]
                    return PodIPInfo(ip=addr.address, device_number=pool.device_number)
            log.warning(
                "Failed to find pod %s namespace %s container %s using IP %s",
                pod.name, pod.namespace, pod.container, recorded.ip,
            )
            raise UnknownPodIPError()

    def get_stats(self) -> tuple[int, int]:
        """Return (total addresses, assigned addresses)."""
        with self._lock:
            return self._total, self._assigned

    def get_eni_needs_ip(self, max_ip_per_eni: int, skip_primary: bool) -> ENIIPPool | None:
        """Return an ENI with fewer than ``max_ip_per_eni`` addresses, if any."""
        with self._lock:
            for pool in self._eni_ip_pools.values():
                if skip_primary and pool.is_primary:
                    continue
                if len(pool.ipv4_addresses) < max_ip_per_eni:
                    return pool
            return None

    def _deletable_eni(self) -> ENIIPPool | None:
        now = self._clock()
        for pool in self._eni_ip_pools.values():
            if pool.is_primary:
                continue
            if now - pool.create_time < MIN_LIFE_TIME:
                continue
            if now - pool.last_unassigned_time < ADDRESS_ENI_COOLING_PERIOD:
                continue
            if pool.assigned_ipv4_addresses != 0:
                continue
            return pool
        return None

    def free_eni(self) -> str | None:
        """Remove one idle secondary ENI and return its id, or None if none qualifies."""
        with self._lock:
            pool = self._deletable_eni()
            if pool is None:
                log.debug("No ENI can be deleted at this time")
                return None
            self._total -= len(pool.ipv4_addresses)
            self._assigned -= pool.assigned_ipv4_addresses
            del self._eni_ip_pools[pool.id]
            ENIS.set(len(self._eni_ip_pools))
            ASSIGNED_IPS.set(self._assigned)
            TOTAL_IPS.set(self._total)
            log.info(
                "FreeENI %s: freed %d addresses, total: %d, assigned: %d",
                pool.id, len(pool.ipv4_addresses), self._total, self._assigned,
            )
            return pool.id

    def delete_eni(self, eni_id: str) -> None:
        """Remove an ENI that has no assigned addresses."""
        with self._lock:
            pool = self._eni_ip_pools.get(eni_id)
            if pool is None:
                raise UnknownENIError()
            if pool.assigned_ipv4_addresses != 0:
                raise ENIInUseError()
            self._total -= len(pool.ipv4_addresses)
            del self._eni_ip_pools[eni_id]
            ENIS.set(len(self._eni_ip_pools))
            TOTAL_IPS.set(self._total)

    def get_pod_infos(self) -> dict[str, PodIPInfo]:
        """Return pod addresses keyed by ``name_namespace_container``."""
        with self._lock:
            return {
                f"{name}_{namespace}_{container}": info
                for (name, namespace, container), info in self._pods_ip.items()
            }

    def get_eni_infos(self) -> ENIInfos:
        """Return a snapshot of the ENIs and address counts."""
        with self._lock:
            pools = {
                eni: replace(
                    pool,
                    ipv4_addresses={ip: replace(a) for ip, a in pool.ipv4_addresses.items()},
                )
                for eni, pool in self._eni_ip_pools.items()
            }
            return ENIInfos(self._total, self._assigned, pools)

    def eni_count(self) -> int:
        """Return the number of ENIs in the store."""
        with self._lock:
            return len(self._eni_ip_pools)

    def get_eni_ip_pools(self, eni_id: str) -> dict[str, AddressInfo]:
        """Return a new mapping of the ENI's addresses."""
        with self._lock:
            pool = self._eni_ip_pools.get(eni_id)
            if pool is None:
                raise UnknownENIError()
            return dict(pool.ipv4_addresses)