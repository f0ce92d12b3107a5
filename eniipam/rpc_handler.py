"""CNI backend: hands addresses to pods on network add and takes them back on delete."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from eniipam.datastore import (
    DataStoreError,
    PodInfo,
    PodIPInfo,
    UnknownPodError,
)
from eniipam.ipamd import IPAMContext
from eniipam.metrics import ADD_IP_CNT, DEL_IP_CNT

log = logging.getLogger(__name__)

RPC_ADDRESS = "127.0.0.1:50051"

_NO_ADDRESS = PodIPInfo(ip="", device_number=0)


@dataclass(frozen=True)
class AddNetworkRequest:
    """A CNI request to give a pod's sandbox a network address."""

    k8s_pod_name: str = ""
    k8s_pod_namespace: str = ""
    k8s_pod_infra_container_id: str = ""
    netns: str = ""
    if_name: str = ""


@dataclass(frozen=True)
class AddNetworkReply:
    """The address given to the pod and how its traffic should be routed."""

    success: bool
    ipv4_addr: str = ""
    ipv4_subnet: str = ""
    device_number: int = 0
    use_external_snat: bool = False
    vpc_cidrs: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DelNetworkRequest:
    """A CNI request to release a pod's address."""

    k8s_pod_name: str = ""
    k8s_pod_namespace: str = ""
    k8s_pod_infra_container_id: str = ""
    ipv4_addr: str = ""
    reason: str = ""


@dataclass(frozen=True)
class DelNetworkReply:
    """The address released and the device number of its ENI."""

    success: bool
    ipv4_addr: str = ""
    device_number: int = 0


class CNIBackend:
    """Serves CNI plugin requests from the node's address pool."""

    def __init__(self, context: IPAMContext) -> None:
        self.context = context

    def add_network(self, request: AddNetworkRequest) -> AddNetworkReply:
        """Assign an address to the pod; failure is reported in the reply."""
        log.info(
            "Received AddNetwork for NS %s, Pod %s, NameSpace %s, Container %s, ifname %s",
            request.netns, request.k8s_pod_name, request.k8s_pod_namespace,
            request.k8s_pod_infra_container_id, request.if_name,
        )
        pod = PodInfo(
            name=request.k8s_pod_name,
            namespace=request.k8s_pod_namespace,
            container=request.k8s_pod_infra_container_id,
        )
        error: DataStoreError | None = None
        try:
            info = self.context.data_store.assign_pod_ipv4_address(pod)
        except DataStoreError as err:
            error = err
            info = _NO_ADDRESS

        vpc_cidrs = [str(cidr) for cidr in self.context.aws_client.get_vpc_ipv4_cidrs() or []]
        for cidr in vpc_cidrs:
            log.debug("VPC CIDR %s", cidr)

        reply = AddNetworkReply(
            success=error is None,
            ipv4_addr=info.ip,
            ipv4_subnet="",
            device_number=info.device_number,
            use_external_snat=self.context.network_client.use_external_snat(),
            vpc_cidrs=vpc_cidrs,
        )
        log.info(
            "Send AddNetworkReply: IPv4Addr %s, DeviceNumber: %d, err: %s",
            info.ip, info.device_number, error,
        )
        ADD_IP_CNT.inc()
        return reply

    def del_network(self, request: DelNetworkRequest) -> DelNetworkReply:
        """Release the pod's address; failure is reported in the reply."""
        log.info(
            "Received DelNetwork for IP %s, Pod %s, Namespace %s, Container %s",
            request.ipv4_addr, request.k8s_pod_name, request.k8s_pod_namespace,
            request.k8s_pod_infra_container_id,
        )
        DEL_IP_CNT.inc({"reason": request.reason})

        store = self.context.data_store
        error: DataStoreError | None = None
        try:
            info = store.unassign_pod_ipv4_address(
                PodInfo(
                    name=request.k8s_pod_name,
                    namespace=request.k8s_pod_namespace,
                    container=request.k8s_pod_infra_container_id,
                )
            )
        except UnknownPodError:
            # Pods recovered after a restart are known only by name and namespace.
            try:
                info = store.unassign_pod_ipv4_address(
                    PodInfo(name=request.k8s_pod_name, namespace=request.k8s_pod_namespace)
                )
            except DataStoreError as err:
                error = err
                info = _NO_ADDRESS
        except DataStoreError as err:
            error = err
            info = _NO_ADDRESS

        log.info(
            "Send DelNetworkReply: IPv4Addr %s, DeviceNumber: %d, err: %s",
            info.ip, info.device_number, error,
        )
        return DelNetworkReply(
            success=error is None, ipv4_addr=info.ip, device_number=info.device_number
        )