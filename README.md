# eniipam

`eniipam` keeps a warm pool of IP addresses on a node whose pods take their
addresses from elastic network interfaces (ENIs). It tracks which ENIs are
attached, which secondary addresses each ENI carries and which pod holds
which address. It grows the pool when too few addresses are free and gives
ENIs back when too many sit idle.

It has no dependencies outside the standard library.

## Modules

- `eniipam.datastore`: `DataStore`, the thread-safe in-memory record of ENIs,
  addresses and pod assignments, with the records `PodInfo`, `AddressInfo`,
  `ENIIPPool`, `PodIPInfo` and `ENIInfos`. Failures raise subclasses of
  `DataStoreError`: `DuplicateENIError`, `DuplicateIPError`,
  `UnknownIPError`, `IPInUseError`, `ENIInUseError`, `UnknownENIError`,
  `UnknownPodError`, `UnknownPodIPError`, `NoAvailableIPError` and
  `PodIPConflictError`.
- `eniipam.config`: reads the tuning variables from a mapping (the process
  environment when none is given): `get_max_eni`, `get_warm_eni_target`,
  `get_warm_ip_target`, `use_custom_network_cfg` and `get_config_for_debug`.
- `eniipam.ipamd`: `IPAMContext`, the pool manager. It initialises the node
  (`node_init`), grows and shrinks the pool (`increase_ip_pool`,
  `decrease_ip_pool`, `retry_alloc_eni_ip`, `update_ip_pool_if_required`),
  reconciles the store with the ENIs really attached
  (`node_ip_pool_reconcile`) and can run all of this in a loop
  (`start_node_ip_pool_manager`, ended by `stop`). Also `ENIMetadata`,
  `PrivateAddress`, `IPAMError` and `is_attachment_limit_exceeded_error`.
- `eniipam.rpc_handler`: `CNIBackend`, whose `add_network` and `del_network`
  turn `AddNetworkRequest` and `DelNetworkRequest` into `AddNetworkReply`
  and `DelNetworkReply`. Failures are reported through the reply's
  `success` field rather than raised.
- `eniipam.introspect`: a read-only HTTP service over the pool state
  (`route`, `IntrospectionHandler`, `make_server`, `serve_forever`).
- `eniipam.metrics`: minimal `Counter`, `Gauge` and `Registry` types with a
  text rendering for scraping; the module-level `REGISTRY` holds the pool's
  metrics.
- `eniipam.crd`: `ENIConfig` and `ENIConfigSpec`, the custom network
  configuration naming the subnet and security groups for pod ENIs, with
  `from_dict` and `to_dict` for their JSON form.

## Using the data store

```python
from eniipam.datastore import DataStore, DuplicateIPError, PodInfo

store = DataStore()
store.add_eni("eni-1", 1, True)
store.add_eni_ipv4_address("eni-1", "10.0.0.11")
store.add_eni_ipv4_address("eni-1", "10.0.0.12")

store.get_stats()                      # (2, 0)

try:
    store.add_eni_ipv4_address("eni-1", "10.0.0.11")
except DuplicateIPError:
    pass

info = store.assign_pod_ipv4_address(PodInfo(name="web", namespace="default",
                                             container="c-1"))
info.ip, info.device_number            # ("10.0.0.11", 1) or ("10.0.0.12", 1)
store.get_stats()                      # (2, 1)
```

When `PodInfo.ip` is set, `assign_pod_ipv4_address` claims that exact
address, which is how pods already running are recovered. An address freed
by `unassign_pod_ipv4_address` is held back from new pods for 30 seconds.
`free_eni` removes and returns one ENI that is not primary, is at least a
minute old, has had no address released in the last minute and has no
address in use; it returns `None` when no ENI qualifies. `DataStore` takes an
optional `clock` callable, which makes these periods easy to control.

## Configuration

| Variable | Meaning |
| --- | --- |
| `WARM_IP_TARGET` | Number of free addresses to keep ready; unset, invalid or 0 means "use whole ENIs". |
| `WARM_ENI_TARGET` | Number of spare ENIs to keep ready (default 1). |
| `MAX_ENI` | Upper limit on attached ENIs; ignored when unset, invalid or below 1. |
| `AWS_VPC_K8S_CNI_CUSTOM_NETWORK_CFG` | A boolean; when true, new ENIs use the subnet and security groups of an `ENIConfig`. |

```python
from eniipam.config import get_max_eni, get_warm_ip_target, get_config_for_debug

get_max_eni(10, {"MAX_ENI": "5"})            # 5
get_max_eni(4, {"MAX_ENI": "5"})             # 4
get_warm_ip_target({"WARM_IP_TARGET": "5"})  # 5
get_config_for_debug({})
# {"WARM_IP_TARGET": 0, "WARM_ENI_TARGET": 1,
#  "AWS_VPC_K8S_CNI_CUSTOM_NETWORK_CFG": False}
```

`IPAMContext` reads these from its `env` argument, or from the process
environment when `env` is `None`.

## Introspection

`make_server(context)` builds a `ThreadingHTTPServer` on port 61678
(`INTROSPECTION_PORT`) without starting it; `serve_forever(context)` runs it
and restarts it with growing delays (1 s up to 60 s) if it fails. Paths:

- `/v1/enis`: ENIs, their addresses and address counts as JSON.
- `/v1/pods`: pod addresses keyed by `name_namespace_container`.
- `/v1/ipamd-env-settings`: the output of `get_config_for_debug`.
- `/v1/networkutils-env-settings`: the result of the `network_env` callable
  passed in, or `{}`.
- `/v1/eni-configs`: the result of `context.eni_config.getter()`, or `null`.
- `/metrics`: every metric in `REGISTRY` in text exposition format.

Any other path returns `{"AvailableCommands": [...]}`. `route(context, path)`
gives the same answers as `(status, content_type, body)` without a server.

## What this package does not do

- It talks to no cloud, cluster or container runtime itself. `IPAMContext`
  is given objects for those jobs: an `aws_client` (ENI and address
  limits, allocating and freeing ENIs and addresses, describing ENIs and
  reading instance metadata), a `network_client` (host and per-ENI network
  setup, IP rules, the external SNAT setting), a `k8s_client` listing local
  pods, a `docker_client` listing running containers and an `eni_config`
  source. No implementations of these are included.
- `CNIBackend` is a plain class; no RPC server is included to carry CNI
  plugin requests to it.
- There is no command-line program; the manager, backend and introspection
  server are started from your own code.