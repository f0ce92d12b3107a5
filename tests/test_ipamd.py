import ipaddress
from dataclasses import dataclass

import pytest

from eniipam.crd import ENIConfigSpec
from eniipam.datastore import DataStore, PodInfo
from eniipam.ipamd import (
    ENIMetadata,
    IPAMContext,
    IPAMError,
    PrivateAddress,
    is_attachment_limit_exceeded_error,
)

PRIMARY_ENI = "eni-00000000"
SEC_ENI = "eni-00000001"
PRIMARY_MAC = "02:00:00:00:00:01"
SEC_MAC = "02:00:00:00:00:02"
PRIMARY_DEVICE = 0
SEC_DEVICE = 2
PRIMARY_SUBNET = "10.10.10.0/24"
SEC_SUBNET = "10.10.20.0/24"
IP01 = "10.10.10.11"
IP02 = "10.10.10.12"
IP11 = "10.10.20.11"
IP12 = "10.10.20.12"
VPC_CIDR = "10.10.0.0/16"


def _value(item):
    if isinstance(item, Exception):
        raise item
    return item


class FakeAWS:
    def __init__(self):
        self.eni_limit = 4
        self.ip_limit = 56
        self.attached = []
        self.vpc_cidr = VPC_CIDR
        self.vpc_cidrs = []
        self.primary_eni = PRIMARY_ENI
        self.local_ipv4 = IP01
        self.describe = {}
        self.alloc_eni_result = SEC_ENI
        self.alloc_eni_calls = []
        self.alloc_ip_calls = []
        self.freed = []
        self.attached_calls = 0

    def get_eni_limit(self):
        return _value(self.eni_limit)

    def get_eni_ip_limit(self):
        return _value(self.ip_limit)

    def get_attached_enis(self):
        self.attached_calls += 1
        return _value(self.attached)

    def get_vpc_ipv4_cidr(self):
        return self.vpc_cidr

    def get_vpc_ipv4_cidrs(self):
        return self.vpc_cidrs

    def get_local_ipv4(self):
        return self.local_ipv4

    def get_primary_eni_mac(self):
        return ""

    def get_primary_eni(self):
        return self.primary_eni

    def describe_eni(self, eni):
        return _value(self.describe[eni]), "eni-00000000-attach"

    def alloc_eni(self, use_custom_cfg, security_groups, subnet):
        self.alloc_eni_calls.append((use_custom_cfg, security_groups, subnet))
        return _value(self.alloc_eni_result)

    def alloc_ip_addresses(self, eni, count):
        self.alloc_ip_calls.append((eni, count))

    def free_eni(self, eni):
        self.freed.append(eni)


class FakeNetwork:
    def __init__(self):
        self.host_setup = []
        self.eni_setup = []
        self.rule_updates = []

    def setup_host_network(self, vpc_cidr, vpc_cidrs, primary_mac, primary_ip):
        self.host_setup.append((vpc_cidr, vpc_cidrs, primary_mac, primary_ip))

    def setup_eni_network(self, eni_ip, mac, device_number, subnet_cidr):
        self.eni_setup.append((eni_ip, mac, device_number, subnet_cidr))

    def get_rule_list(self):
        return []

    def update_rule_list_by_src(self, rules, src, vpc_cidrs, use_snat):
        self.rule_updates.append((src, vpc_cidrs, use_snat))

    def use_external_snat(self):
        return False


class FakeK8S:
    def __init__(self, pods):
        self.pods = pods

    def k8s_get_local_pod_ips(self):
        return _value(self.pods)


@dataclass
class Container:
    id: str
    name: str
    k8s_uid: str


class FakeDocker:
    def __init__(self, containers):
        self.containers = containers

    def get_running_containers(self):
        return _value(self.containers)


class FakeENIConfig:
    def __init__(self, spec):
        self.spec = spec

    def my_eni_config(self):
        return _value(self.spec)


class Clock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now


def _primary_meta(ips=(IP01, IP02)):
    return ENIMetadata(PRIMARY_ENI, PRIMARY_MAC, PRIMARY_DEVICE, PRIMARY_SUBNET, list(ips))


def _sec_meta():
    return ENIMetadata(SEC_ENI, SEC_MAC, SEC_DEVICE, SEC_SUBNET, [IP11, IP12])


def _addrs(primary, secondary):
    return [PrivateAddress(primary, True), PrivateAddress(secondary, False)]


def _context(aws, env=None, **kwargs):
    return IPAMContext(aws, network_client=FakeNetwork(), env=env or {}, sleep=lambda s: None, **kwargs)


def test_node_init():
    aws = FakeAWS()
    aws.attached = [_primary_meta(), _sec_meta()]
    aws.describe = {PRIMARY_ENI: _addrs(IP01, IP02), SEC_ENI: _addrs(IP11, IP12)}
    k8s = FakeK8S([PodInfo(name="pod1", namespace="default", uid="pod-uid", ip=IP02)])
    docker = FakeDocker(
        {"pod-uid": Container("docker-id", "/k8s_POD_pod1_default_pod-uid_0", "pod-uid")}
    )
    ctx = _context(aws, k8s_client=k8s, docker_client=docker)

    ctx.node_init()

    net = ctx.network_client
    assert net.host_setup == [
        (ipaddress.ip_network(VPC_CIDR), [], "", ipaddress.ip_address(IP01))
    ]
    assert net.eni_setup == [(IP11, SEC_MAC, SEC_DEVICE, SEC_SUBNET)]
    assert net.rule_updates == [(ipaddress.ip_network(f"{IP02}/32"), [], True)]
    assert ctx.data_store.get_stats() == (2, 1)
    assert ctx.data_store.get_pod_infos()["pod1_default_docker-id"].ip == IP02
    assert ctx.primary_ip == {PRIMARY_ENI: IP01, SEC_ENI: IP11}
    assert ctx.max_addrs_per_eni == 56


def test_node_init_fails_without_attached_enis():
    aws = FakeAWS()
    aws.attached = RuntimeError("metadata unavailable")
    ctx = _context(aws)
    with pytest.raises(IPAMError, match="failed to retrieve attached ENIs info"):
        ctx.node_init()


def test_node_init_fails_on_bad_vpc_cidr():
    aws = FakeAWS()
    aws.vpc_cidr = "not-a-cidr"
    ctx = _context(aws)
    with pytest.raises(IPAMError, match="failed to retrieve VPC CIDR"):
        ctx.node_init()


def _increase(env, eni_config):
    aws = FakeAWS()
    aws.ip_limit = 5
    aws.attached = [_primary_meta(), _sec_meta()]
    aws.describe = {SEC_ENI: _addrs(IP11, IP12)}
    ctx = _context(aws, env=env, eni_config=eni_config)
    ctx.increase_ip_pool()
    return aws, ctx


def test_increase_ip_pool_default():
    aws, ctx = _increase({}, None)
    assert aws.alloc_eni_calls == [(False, [], "")]
    assert aws.alloc_ip_calls == [(SEC_ENI, 5)]
    assert ctx.network_client.eni_setup == [(IP11, SEC_MAC, SEC_DEVICE, SEC_SUBNET)]
    assert ctx.data_store.eni_count() == 1
    assert ctx.data_store.get_stats() == (1, 0)


def test_increase_ip_pool_custom_eni():
    spec = ENIConfigSpec(security_groups=["sg1-id", "sg2-id"], subnet="subnet1")
    aws, ctx = _increase({"AWS_VPC_K8S_CNI_CUSTOM_NETWORK_CFG": "true"}, FakeENIConfig(spec))
    assert aws.alloc_eni_calls == [(True, ["sg1-id", "sg2-id"], "subnet1")]
    assert aws.alloc_ip_calls == [(SEC_ENI, 5)]
    assert ctx.data_store.eni_count() == 1


def test_increase_ip_pool_custom_eni_no_cfg():
    aws, ctx = _increase(
        {"AWS_VPC_K8S_CNI_CUSTOM_NETWORK_CFG": "true"},
        FakeENIConfig(RuntimeError("no POD eni config")),
    )
    assert aws.alloc_eni_calls == []
    assert ctx.data_store.eni_count() == 0


def test_increase_ip_pool_learns_attachment_limit():
    aws = FakeAWS()
    aws.alloc_eni_result = RuntimeError("AttachmentLimitExceeded: too many")
    ctx = _context(aws)
    ctx.data_store.add_eni(PRIMARY_ENI, 0, True)
    ctx.increase_ip_pool()
    assert ctx.max_eni == 1
    ctx.increase_ip_pool()
    assert len(aws.alloc_eni_calls) == 1


def test_increase_ip_pool_skips_at_instance_limit():
    aws = FakeAWS()
    aws.eni_limit = 1
    ctx = _context(aws)
    ctx.data_store.add_eni(PRIMARY_ENI, 0, True)
    ctx.increase_ip_pool()
    assert aws.alloc_eni_calls == []


def test_node_ip_pool_reconcile():
    aws = FakeAWS()
    aws.ip_limit = 5
    aws.attached = [_primary_meta()]
    aws.describe = {PRIMARY_ENI: _addrs(IP01, IP02)}
    clock = Clock(100.0)
    ctx = _context(aws, clock=clock)

    ctx.node_ip_pool_reconcile(0)
    infos = ctx.data_store.get_eni_infos()
    assert len(infos.eni_ip_pools) == 1
    assert infos.total_ips == 1

    clock.now += 1
    aws.attached = [_primary_meta(ips=(IP01,))]
    ctx.node_ip_pool_reconcile(0)
    infos = ctx.data_store.get_eni_infos()
    assert len(infos.eni_ip_pools) == 1
    assert infos.total_ips == 0

    clock.now += 1
    aws.attached = None
    ctx.node_ip_pool_reconcile(0)
    infos = ctx.data_store.get_eni_infos()
    assert len(infos.eni_ip_pools) == 0
    assert infos.total_ips == 0


def test_node_ip_pool_reconcile_respects_interval():
    aws = FakeAWS()
    clock = Clock(100.0)
    ctx = _context(aws, clock=clock)
    ctx.last_node_ip_pool_action = 90.0
    ctx.node_ip_pool_reconcile(60.0)
    assert aws.attached_calls == 0


def test_pool_thresholds_follow_warm_eni_target():
    ctx = _context(FakeAWS())
    ctx.max_addrs_per_eni = 5
    ctx.data_store.add_eni("eni-1", 0, True)
    for n in range(4):
        ctx.data_store.add_eni_ipv4_address("eni-1", f"1.1.1.{n}")
    assert ctx.node_ip_pool_too_low() is True
    assert ctx.node_ip_pool_too_high() is False
    for n in range(4, 10):
        ctx.data_store.add_eni_ipv4_address("eni-1", f"1.1.1.{n}")
    assert ctx.node_ip_pool_too_low() is False
    assert ctx.node_ip_pool_too_high() is True


def test_pool_too_high_blocked_by_warm_ip_target():
    ctx = _context(FakeAWS(), env={"WARM_IP_TARGET": "20"})
    ctx.max_addrs_per_eni = 5
    ctx.data_store.add_eni("eni-1", 0, True)
    for n in range(12):
        ctx.data_store.add_eni_ipv4_address("eni-1", f"1.1.1.{n}")
    assert ctx.node_ip_pool_too_high() is False
    assert ctx.node_ip_pool_too_low() is True


def test_decrease_ip_pool_frees_idle_eni():
    aws = FakeAWS()
    clock = Clock(0.0)
    ctx = _context(aws, data_store=DataStore(clock=clock), clock=clock)
    ctx.data_store.add_eni(PRIMARY_ENI, 0, True)
    ctx.data_store.add_eni(SEC_ENI, 2, False)
    ctx.decrease_ip_pool()
    assert aws.freed == []
    clock.now = 120.0
    ctx.decrease_ip_pool()
    assert aws.freed == [SEC_ENI]
    assert ctx.data_store.eni_count() == 1
    assert ctx.last_node_ip_pool_action == 120.0


def test_retry_alloc_eni_ip():
    aws = FakeAWS()
    aws.ip_limit = 5
    aws.describe = {SEC_ENI: _addrs(IP11, IP12)}
    ctx = _context(aws)
    ctx.data_store.add_eni(SEC_ENI, 2, False)
    ctx.retry_alloc_eni_ip()
    assert aws.alloc_ip_calls == [(SEC_ENI, 5)]
    assert ctx.data_store.get_stats() == (1, 0)


def test_get_eni_addresses_requires_primary():
    aws = FakeAWS()
    aws.describe = {SEC_ENI: [PrivateAddress(IP11, False)]}
    ctx = _context(aws)
    with pytest.raises(IPAMError, match="primary address"):
        ctx.get_eni_addresses(SEC_ENI)


def test_get_eni_addresses_returns_primary():
    aws = FakeAWS()
    aws.describe = {SEC_ENI: _addrs(IP11, IP12)}
    ctx = _context(aws)
    addrs, primary = ctx.get_eni_addresses(SEC_ENI)
    assert primary == IP11
    assert [a.private_ip_address for a in addrs] == [IP11, IP12]


def test_wait_eni_attached_gives_up():
    aws = FakeAWS()
    aws.attached = []
    sleeps = []
    ctx = IPAMContext(aws, env={}, sleep=sleeps.append)
    with pytest.raises(IPAMError):
        ctx.wait_eni_attached(SEC_ENI)
    assert aws.attached_calls == 6
    assert len(sleeps) == 5


def test_wait_eni_attached_returns_metadata():
    aws = FakeAWS()
    aws.attached = [_primary_meta(), _sec_meta()]
    ctx = _context(aws)
    assert ctx.wait_eni_attached(SEC_ENI).mac == SEC_MAC


def test_get_local_pods_with_retry_gives_up():
    sleeps = []
    ctx = IPAMContext(
        FakeAWS(), k8s_client=FakeK8S(RuntimeError("kubelet down")), env={}, sleep=sleeps.append
    )
    with pytest.raises(IPAMError, match="giving up"):
        ctx.get_local_pods_with_retry()
    assert len(sleeps) == 12


def test_get_local_pods_matches_containers():
    pods = [PodInfo(name="a", namespace="ns", uid="u1"), PodInfo(name="b", namespace="ns", uid="u2")]
    ctx = _context(
        FakeAWS(),
        k8s_client=FakeK8S(pods),
        docker_client=FakeDocker({"x": Container("cid-1", "n", "u1")}),
    )
    result = ctx.get_local_pods_with_retry()
    assert [p.container for p in result] == ["cid-1", ""]


def test_start_node_ip_pool_manager_stops():
    aws = FakeAWS()
    ctx = _context(aws)
    ctx.stop()
    ctx.start_node_ip_pool_manager()
    assert aws.attached_calls == 0
    assert aws.alloc_eni_calls == []


@pytest.mark.parametrize(
    "message, expected",
    [
        ("AttachmentLimitExceeded: limit reached", True),
        ("InsufficientFreeAddressesInSubnet", False),
    ],
)
def test_is_attachment_limit_exceeded_error(message, expected):
    assert is_attachment_limit_exceeded_error(RuntimeError(message)) is expected