"""Warm pool manager: keeps a node's ENIs and secondary addresses in step with demand."""

from __future__ import annotations

import ipaddress
import logging
import math
import threading
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

from eniipam.config import (
    NO_WARM_IP_TARGET,
    get_max_eni,
    get_warm_eni_target,
    get_warm_ip_target,
    use_custom_network_cfg,
)
from eniipam.crd import ENIConfigSpec
from eniipam.datastore import (
    AddressInfo,
    DataStore,
    DataStoreError,
    DuplicateENIError,
    DuplicateIPError,
    PodInfo,
    UnknownENIError,
)
from eniipam.metrics import (
    ENIS_MAX,
    IP_MAX,
    IPAMD_ACTIONS_INPROGRESS,
    IPAMD_ERR,
    RECONCILE_CNT,
)

log = logging.getLogger(__name__)

IP_POOL_MONITOR_INTERVAL = 5.0
MAX_RETRY_CHECK_ENI = 5
ENI_ATTACH_TIME = 10.0
NODE_IP_POOL_RECONCILE_INTERVAL = 60.0
MAX_K8S_RETRIES = 12
RETRY_K8S_INTERVAL = 5.0


class IPAMError(Exception):
    """Raised when the pool manager cannot complete an operation."""


@dataclass
class ENIMetadata:
    """An ENI as reported by the instance metadata service."""

    eni_id: str
    mac: str = ""
    device_number: int = 0
    subnet_ipv4_cidr: str = ""
    local_ipv4s: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PrivateAddress:
    """A private address of an ENI as described by EC2."""

    private_ip_address: str
    primary: bool = False


class _AWSAPI(Protocol):
    def get_eni_limit(self) -> int: ...
    def get_eni_ip_limit(self) -> int: ...
    def get_attached_enis(self) -> Sequence[ENIMetadata] | None: ...
    def get_vpc_ipv4_cidr(self) -> str: ...
    def get_vpc_ipv4_cidrs(self) -> Sequence[str]: ...
    def get_local_ipv4(self) -> str: ...
    def get_primary_eni_mac(self) -> str: ...
    def get_primary_eni(self) -> str: ...
    def describe_eni(self, eni: str) -> tuple[Sequence[PrivateAddress], str]: ...
    def alloc_eni(self, use_custom_cfg: bool, security_groups: list[str], subnet: str) -> str: ...
    def alloc_ip_addresses(self, eni: str, count: int) -> None: ...
    def free_eni(self, eni: str) -> None: ...


class _NetworkAPI(Protocol):
    def setup_host_network(self, vpc_cidr: Any, vpc_cidrs: Any, primary_mac: str, primary_ip: Any) -> None: ...
    def setup_eni_network(self, eni_ip: str, mac: str, device_number: int, subnet_cidr: str) -> None: ...
    def get_rule_list(self) -> Any: ...
    def update_rule_list_by_src(self, rules: Any, src: Any, vpc_cidrs: list[str], use_snat: bool) -> None: ...
    def use_external_snat(self) -> bool: ...


class _K8SAPI(Protocol):
    def k8s_get_local_pod_ips(self) -> list[PodInfo] | None: ...


class _ContainerInfo(Protocol):
    id: str
    name: str
    k8s_uid: str


class _DockerAPI(Protocol):
    def get_running_containers(self) -> Mapping[str, _ContainerInfo]: ...


class _ENIConfigSource(Protocol):
    def my_eni_config(self) -> ENIConfigSpec: ...


def is_attachment_limit_exceeded_error(err: BaseException) -> bool:
    """Return whether ``err`` reports that no more ENIs can be attached."""
    return "AttachmentLimitExceeded" in str(err)


def _err_inc(fn: str, err: object) -> None:
    IPAMD_ERR.inc({"fn": fn, "error": str(err)})


@contextmanager
def _in_progress(fn: str) -> Iterator[None]:
    IPAMD_ACTIONS_INPROGRESS.add(1, {"fn": fn})
    try:
        yield
    finally:
        IPAMD_ACTIONS_INPROGRESS.add(-1, {"fn": fn})


def _log_pool_stats(total: int, used: int, current_max: int, max_addrs: int) -> None:
    log.debug(
        "IP pool stats: total = %d, used = %d, currentMaxAddrsPerENI = %d, maxAddrsPerENI = %d",
        total, used, current_max, max_addrs,
    )


class IPAMContext:
    """Node-level control state for the warm IP pool."""

    def __init__(
        self,
        aws_client: _AWSAPI,
        data_store: DataStore | None = None,
        k8s_client: _K8SAPI | None = None,
        docker_client: _DockerAPI | None = None,
        network_client: _NetworkAPI | None = None,
        eni_config: _ENIConfigSource | None = None,
        env: Mapping[str, str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.aws_client = aws_client
        self.k8s_client = k8s_client
        self.docker_client = docker_client
        self.network_client = network_client
        self.eni_config = eni_config
        self.env = env
        self._sleep = sleep
        self._clock = clock
        self.data_store = data_store if data_store is not None else DataStore(clock=clock)
        self.current_max_addrs_per_eni = 0
        self.max_addrs_per_eni = 0
        # Set to the attached ENI count once EC2 reports the attachment limit.
        self.max_eni = 0
        self.primary_ip: dict[str, str] = {}
        self.last_node_ip_pool_action = -math.inf
        self._stop = threading.Event()

    def node_init(self) -> None:
        """Discover attached ENIs, set up host networking and recover pod addresses."""
        with _in_progress("nodeInit"):
            self._node_init()

    def _node_init(self) -> None:
        aws = self.aws_client
        try:
            instance_max_enis = aws.get_eni_limit()
        except Exception:
            instance_max_enis = 0
        max_enis = get_max_eni(instance_max_enis, self.env)
        if max_enis >= 1:
            ENIS_MAX.set(max_enis)

        try:
            max_ips = aws.get_eni_ip_limit()
        except Exception:
            pass
        else:
            IP_MAX.set(max_ips * max_enis)
        self.primary_ip = {}

        try:
            enis = list(aws.get_attached_enis() or [])
        except Exception as err:
            log.error("Failed to retrieve ENI info")
            raise IPAMError("ipamd init: failed to retrieve attached ENIs info") from err

        try:
            vpc_cidr = ipaddress.ip_network(aws.get_vpc_ipv4_cidr(), strict=False)
        except ValueError as err:
            log.error("Failed to parse VPC IPv4 CIDR: %s", err)
            raise IPAMError(f"ipamd init: failed to retrieve VPC CIDR: {err}") from err

        try:
            primary_ip: Any = ipaddress.ip_address(aws.get_local_ipv4())
        except ValueError:
            primary_ip = None
        try:
            self.network_client.setup_host_network(
                vpc_cidr, aws.get_vpc_ipv4_cidrs(), aws.get_primary_eni_mac(), primary_ip
            )
        except Exception as err:
            log.error("Failed to setup host network: %s", err)
            raise IPAMError(f"ipamd init: failed to setup host network: {err}") from err

        self.data_store = DataStore(clock=self._clock)
        for eni in enis:
            log.debug("Discovered ENI %s", eni.eni_id)
            try:
                self.setup_eni(eni.eni_id, eni)
            except Exception as err:
                log.error("Failed to setup ENI %s network: %s", eni.eni_id, err)
                raise IPAMError(f"Failed to setup ENI {eni.eni_id}: {err}") from err

        try:
            used_ips = self.get_local_pods_with_retry()
        except IPAMError as err:
            # Happens when this daemon starts before kubelet.
            log.warning("During ipamd init, failed to get Pod information from kubelet %s", err)
            _err_inc("nodeInitK8SGetLocalPodIPsFailed", err)
            return

        try:
            rules = self.network_client.get_rule_list()
        except Exception as err:
            log.error("During ipamd init: failed to retrieve IP rule list %s", err)
            return

        for pod in used_ips:
            if not pod.container:
                log.info("Skipping Pod %s, Namespace %s, due to no matching container",
                         pod.name, pod.namespace)
                continue
            if not pod.ip:
                log.info("Skipping Pod %s, Namespace %s, due to no IP", pod.name, pod.namespace)
                continue
            log.info("Recovered AddNetwork for Pod %s, Namespace %s, Container %s",
                     pod.name, pod.namespace, pod.container)
            try:
                self.data_store.assign_pod_ipv4_address(pod)
            except DataStoreError as err:
                _err_inc("nodeInitAssignPodIPv4AddressFailed", err)
                log.warning("During ipamd init, failed to use pod ip %s returned from Kubelet %s",
                            pod.ip, err)

            src = ipaddress.ip_network(f"{pod.ip}/32", strict=False)
            vpc_cidrs = list(aws.get_vpc_ipv4_cidrs() or [])
            try:
                self.network_client.update_rule_list_by_src(
                    rules, src, vpc_cidrs, not self.network_client.use_external_snat()
                )
            except Exception as err:
                log.error("UpdateRuleListBySrc in node_init failed for IP %s: %s", pod.ip, err)

    def get_local_pods_with_retry(self) -> list[PodInfo]:
        """Return local pods from kubelet, each matched to its running container."""
        pods: list[PodInfo] | None = None
        for attempt in range(1, MAX_K8S_RETRIES + 1):
            try:
                pods = self.k8s_client.k8s_get_local_pod_ips()
                break
            except Exception as err:
                log.info("Not able to get local pods yet (attempt %d/%d): %s",
                         attempt, MAX_K8S_RETRIES, err)
                self._sleep(RETRY_K8S_INTERVAL)
        if pods is None:
            raise IPAMError("unable to get local pods, giving up")

        containers: Mapping[str, _ContainerInfo] = {}
        for attempt in range(1, MAX_K8S_RETRIES + 1):
            try:
                containers = self.docker_client.get_running_containers()
                break
            except Exception as err:
                log.info("Not able to get local containers yet (attempt %d/%d): %s",
                         attempt, MAX_K8S_RETRIES, err)
                self._sleep(RETRY_K8S_INTERVAL)

        for pod in pods:
            match = next((c for c in containers.values() if c.k8s_uid == pod.uid), None)
            if match is not None:
                log.debug("Found pod(%s)'s container ID: %s", match.name, match.id)
                pod.container = match.id
        return pods

    def stop(self) -> None:
        """Ask a running pool manager loop to finish."""
        self._stop.set()

    def start_node_ip_pool_manager(self) -> None:
        """Watch the pool, growing or shrinking it, until ``stop`` is called."""
        while not self._stop.wait(IP_POOL_MONITOR_INTERVAL):
            self.update_ip_pool_if_required()
            self.node_ip_pool_reconcile(NODE_IP_POOL_RECONCILE_INTERVAL)

    def update_ip_pool_if_required(self) -> None:
        """Top up ENIs short of addresses, then grow or shrink the pool."""
        self.retry_alloc_eni_ip()
        if self.node_ip_pool_too_low():
            self.increase_ip_pool()
        elif self.node_ip_pool_too_high():
            self.decrease_ip_pool()

    def retry_alloc_eni_ip(self) -> None:
        """Allocate addresses to one ENI that holds fewer than the limit."""
        with _in_progress("retryAllocENIIP"):
            cur_target, defined = self.get_cur_warm_ip_target()
            if defined and cur_target <= 0:
                log.debug("Skipping retry allocating ENI IP, warm IP target reached")
                return
            try:
                max_ip_limit = self.aws_client.get_eni_ip_limit()
            except Exception as err:
                log.info("Failed to retrieve ENI IP limit: %s", err)
                return
            eni = self.data_store.get_eni_needs_ip(max_ip_limit, use_custom_network_cfg(self.env))
            if eni is None:
                return
            log.debug("Attempt again to allocate IP address for ENI: %s", eni.id)
            try:
                self.aws_client.alloc_ip_addresses(eni.id, cur_target if defined else max_ip_limit)
            except Exception as err:
                _err_inc("retryAllocENIIPAllocAllIPAddressFailed", err)
                log.warning("During eni repair: error encountered on allocate IP address %s", err)
                return
            try:
                addrs, _ = self.get_eni_addresses(eni.id)
            except IPAMError as err:
                _err_inc("retryAllocENIIPgetENIaddressesFailed", err)
                log.warning("During eni repair: failed to get ENI ip addresses %s", err)
                return
            self.last_node_ip_pool_action = self._clock()
            self.add_eni_addresses_to_datastore(addrs, eni.id)

    def decrease_ip_pool(self) -> None:
        """Release one idle secondary ENI back to EC2."""
        with _in_progress("decreaseIPPool"):
            eni = self.data_store.free_eni()
            if eni is None:
                log.info("No ENI to remove, all ENIs have IPs in use")
                return
            log.debug("Start freeing ENI %s", eni)
            try:
                self.aws_client.free_eni(eni)
            except Exception as err:
                _err_inc("decreaseIPPoolFreeENIFailed", err)
                log.error("Failed to free ENI %s, err: %s", eni, err)
                return
            self.last_node_ip_pool_action = self._clock()
            total, used = self.data_store.get_stats()
            log.debug("Successfully decreased IP pool")
            _log_pool_stats(total, used, self.current_max_addrs_per_eni, self.max_addrs_per_eni)

    def increase_ip_pool(self) -> None:
        """Attach a new ENI and fill it with secondary addresses."""
        log.debug("Start increasing IP pool size")
        with _in_progress("increaseIPPool"):
            self._increase_ip_pool()

    def _increase_ip_pool(self) -> None:
        cur_target, defined = self.get_cur_warm_ip_target()
        if defined and cur_target <= 0:
            log.debug("Skipping increase IP pool, warm IP target reached")
            return

        try:
            instance_max_enis = self.aws_client.get_eni_limit()
            limit_known = True
        except Exception:
            instance_max_enis = 0
            limit_known = False
        max_enis = get_max_eni(instance_max_enis, self.env)
        if max_enis >= 1:
            ENIS_MAX.set(max_enis)

        eni_count = self.data_store.eni_count()
        if limit_known and max_enis == eni_count:
            log.debug("Skipping increase IP pool due to max ENI already attached: %d", max_enis)
            return
        if self.max_eni > 0 and self.max_eni == eni_count:
            if self.max_eni < max_enis:
                _err_inc("unExpectedMaxENIAttached",
                         f"desired: {max_enis}current: {self.max_eni}")
            log.debug("Skipping increase IP pool due to max ENI already attached: %d", self.max_eni)
            return

        security_groups: list[str] = []
        subnet = ""
        custom = use_custom_network_cfg(self.env)
        if custom:
            try:
                spec = self.eni_config.my_eni_config()
            except Exception as err:
                log.error("Failed to get pod ENI config: %s", err)
                return
            log.info("ipamd: using custom network config: %s, %s", spec.security_groups, spec.subnet)
            security_groups = list(spec.security_groups)
            subnet = spec.subnet

        try:
            eni = self.aws_client.alloc_eni(custom, security_groups, subnet)
        except Exception as err:
            log.error("Failed to increase pool size due to not able to allocate ENI %s", err)
            if is_attachment_limit_exceeded_error(err):
                self.max_eni = self.data_store.eni_count()
                log.info("Discovered the instance max ENI allowed is: %d", self.max_eni)
            _err_inc("increaseIPPoolAllocENI", err)
            return

        try:
            max_ip_limit = self.aws_client.get_eni_ip_limit()
        except Exception as err:
            log.info("Failed to retrieve ENI IP limit: %s", err)
            return

        try:
            self.aws_client.alloc_ip_addresses(eni, cur_target if defined else max_ip_limit)
        except Exception as err:
            # Carry on with whatever addresses were allocated.
            log.warning("Failed to allocate all available ip addresses on an ENI %s", err)
            _err_inc("increaseIPPoolAllocAllIPAddressFailed", err)

        try:
            metadata = self.wait_eni_attached(eni)
        except IPAMError as err:
            _err_inc("increaseIPPoolwaitENIAttachedFailed", err)
            log.error("Failed to increase pool size: attached ENI not discovered %s", err)
            return

        try:
            self.setup_eni(eni, metadata)
        except IPAMError as err:
            _err_inc("increaseIPPoolsetupENIFailed", err)
            log.error("Failed to increase pool size: %s", err)
            return
        self.last_node_ip_pool_action = self._clock()
        total, used = self.data_store.get_stats()
        log.debug("Successfully increased IP pool")
        _log_pool_stats(total, used, self.current_max_addrs_per_eni, self.max_addrs_per_eni)

    def setup_eni(self, eni: str, eni_metadata: ENIMetadata) -> None:
        """Record the ENI and its addresses, and set up its host networking."""
        try:
            self.data_store.add_eni(
                eni, eni_metadata.device_number, eni == self.aws_client.get_primary_eni()
            )
        except DuplicateENIError:
            pass
        except DataStoreError as err:
            raise IPAMError(f"failed to add ENI {eni} to data store: {err}") from err

        try:
            addrs, eni_primary_ip = self.get_eni_addresses(eni)
        except IPAMError as err:
            raise IPAMError(f"failed to retrieve ENI {eni} IP addresses: {err}") from err

        try:
            self.current_max_addrs_per_eni = self.aws_client.get_eni_ip_limit()
        except Exception:
            # Unknown instance type: fall back to what the ENI currently carries.
            self.current_max_addrs_per_eni = len(addrs)
        self.max_addrs_per_eni = max(self.max_addrs_per_eni, self.current_max_addrs_per_eni)

        if eni != self.aws_client.get_primary_eni():
            try:
                self.network_client.setup_eni_network(
                    eni_primary_ip, eni_metadata.mac, eni_metadata.device_number,
                    eni_metadata.subnet_ipv4_cidr,
                )
            except Exception as err:
                raise IPAMError(f"failed to setup ENI {eni} network: {err}") from err

        self.primary_ip[eni] = self.add_eni_addresses_to_datastore(addrs, eni)

    def add_eni_addresses_to_datastore(self, ec2_addrs: Sequence[PrivateAddress], eni: str) -> str:
        """Add the secondary addresses to the store; return the primary address."""
        primary = ""
        for addr in ec2_addrs:
            if addr.primary:
                primary = addr.private_ip_address
                continue
            try:
                self.data_store.add_eni_ipv4_address(eni, addr.private_ip_address)
            except DuplicateIPError:
                pass
            except DataStoreError as err:
                log.warning("Failed to add IP %s to data store: %s", addr.private_ip_address, err)
                _err_inc("addENIaddressesToDataStoreAddENIIPv4AddressFailed", err)
        return primary

    def get_eni_addresses(self, eni: str) -> tuple[list[PrivateAddress], str]:
        """Return all addresses of the ENI and its primary address."""
        try:
            addrs, _ = self.aws_client.describe_eni(eni)
        except Exception as err:
            raise IPAMError(f"failed to find ENI addresses for ENI {eni}: {err}") from err
        addrs = list(addrs)
        primary = next((a.private_ip_address for a in addrs if a.primary), None)
        if primary is None:
            raise IPAMError(f"failed to find the ENI's primary address for ENI {eni}")
        return addrs, primary

    def wait_eni_attached(self, eni: str) -> ENIMetadata:
        """Wait until the metadata service lists the ENI, and return its metadata."""
        retry = 0
        while True:
            try:
                enis = self.aws_client.get_attached_enis() or []
            except Exception as err:
                log.warning("Failed to increase pool, error trying to discover attached ENIs: %s", err)
                self._sleep(ENI_ATTACH_TIME)
                continue
            found = next((e for e in enis if e.eni_id == eni), None)
            if found is not None:
                return found
            retry += 1
            if retry > MAX_RETRY_CHECK_ENI:
                log.error("unable to discover attached ENI from metadata service")
                message = "waitENIAttached: not able to retrieve ENI from metadata service"
                _err_inc("waitENIAttachedMaxRetryExceeded", message)
                raise IPAMError(message)
            log.debug("Not able to discover attached ENI yet (attempt %d/%d)",
                      retry, MAX_RETRY_CHECK_ENI)
            self._sleep(ENI_ATTACH_TIME)

    def node_ip_pool_too_low(self) -> bool:
        """Return whether the pool is below its low threshold."""
        cur_target, defined = self.get_cur_warm_ip_target()
        if defined:
            return cur_target > 0
        warm_eni_target = get_warm_eni_target(self.env)
        total, used = self.data_store.get_stats()
        _log_pool_stats(total, used, self.current_max_addrs_per_eni, self.max_addrs_per_eni)
        return total - used < self.max_addrs_per_eni * warm_eni_target

    def node_ip_pool_too_high(self) -> bool:
        """Return whether the pool is above its high threshold."""
        warm_eni_target = get_warm_eni_target(self.env)
        total, used = self.data_store.get_stats()
        _log_pool_stats(total, used, self.current_max_addrs_per_eni, self.max_addrs_per_eni)
        available = total - used
        target = get_warm_ip_target(self.env)
        if target != NO_WARM_IP_TARGET and target >= available:
            return False
        return available >= (warm_eni_target + 1) * self.max_addrs_per_eni

    def node_ip_pool_reconcile(self, interval: float) -> None:
        """Bring the store in line with the ENIs and addresses the instance really has."""
        with _in_progress("nodeIPPoolReconcile"):
            now = self._clock()
            if now - self.last_node_ip_pool_action <= interval:
                return
            log.debug("Reconciling ENI/IP pool info...")
            try:
                attached = list(self.aws_client.get_attached_enis() or [])
            except Exception as err:
                log.error("IP pool reconcile: Failed to get attached ENI info %s", err)
                _err_inc("reconcileFailedGetENIs", err)
                return

            remaining = self.data_store.get_eni_infos().eni_ip_pools
            for attached_eni in attached:
                try:
                    ip_pool = self.data_store.get_eni_ip_pools(attached_eni.eni_id)
                except UnknownENIError:
                    log.debug("Reconcile and add a new ENI %s", attached_eni.eni_id)
                    try:
                        self.setup_eni(attached_eni.eni_id, attached_eni)
                    except IPAMError as err:
                        log.error("IP pool reconcile: Failed to setup ENI %s network: %s",
                                  attached_eni.eni_id, err)
                        _err_inc("eniReconcileAdd", err)
                        continue
                    RECONCILE_CNT.inc({"fn": "eniReconcileAdd"})
                    continue
                log.debug("Reconcile existing ENI %s IP pool", attached_eni.eni_id)
                self.eni_ip_pool_reconcile(ip_pool, attached_eni, attached_eni.eni_id)
                remaining.pop(attached_eni.eni_id, None)

            for eni in remaining:
                log.info("Reconcile and delete detached ENI %s", eni)
                try:
                    self.data_store.delete_eni(eni)
                except DataStoreError as err:
                    log.error("IP pool reconcile: Failed to delete ENI during reconcile: %s", err)
                    _err_inc("eniReconcileDel", err)
                    continue
                RECONCILE_CNT.inc({"fn": "eniReconcileDel"})
            log.debug("Successfully Reconciled ENI/IP pool")
            self.last_node_ip_pool_action = now

    def eni_ip_pool_reconcile(
        self, ip_pool: dict[str, AddressInfo], attached_eni: ENIMetadata, eni: str
    ) -> None:
        """Add addresses the ENI gained and drop those it no longer has."""
        for local_ip in attached_eni.local_ipv4s:
            if local_ip == self.primary_ip.get(eni):
                log.debug("Reconcile and skip primary IP %s on ENI %s", local_ip, eni)
                continue
            try:
                self.data_store.add_eni_ipv4_address(eni, local_ip)
            except DuplicateIPError:
                log.debug("Reconciled IP %s on ENI %s", local_ip, eni)
                ip_pool.pop(local_ip, None)
                continue
            except DataStoreError as err:
                log.error("Failed to reconcile IP %s on ENI %s", local_ip, eni)
                _err_inc("ipReconcileAdd", err)
                continue
            RECONCILE_CNT.inc({"fn": "eniIPPoolReconcileAdd"})

        for existing_ip in list(ip_pool):
            log.debug("Reconcile and delete IP %s on ENI %s", existing_ip, eni)
            try:
                self.data_store.del_eni_ipv4_address(eni, existing_ip)
            except DataStoreError as err:
                log.error("Failed to reconcile and delete IP %s on ENI %s, %s", existing_ip, eni, err)
                _err_inc("ipReconcileDel", err)
                continue
            RECONCILE_CNT.inc({"fn": "eniIPPoolReconcileDel"})

    def get_cur_warm_ip_target(self) -> tuple[int, bool]:
        """Return how many more free addresses WARM_IP_TARGET asks for, and whether it is set."""
        target = get_warm_ip_target(self.env)
        if target == NO_WARM_IP_TARGET:
            return target, False
        total, used = self.data_store.get_stats()
        cur_target = target - (total - used)
        log.debug("Current warm IP stats: target: %d, total: %d, used: %d, curTarget: %d",
                  target, total, used, cur_target)
        return cur_target, True