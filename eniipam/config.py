"""Environment settings that shape the warm IP pool."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from typing import Any

log = logging.getLogger(__name__)

# Desired number of free IPs kept in the warm pool. Unset means all IPs of an ENI.
ENV_WARM_IP_TARGET = "WARM_IP_TARGET"
NO_WARM_IP_TARGET = 0

# Desired number of whole free ENIs kept in the warm pool.
ENV_WARM_ENI_TARGET = "WARM_ENI_TARGET"
DEFAULT_WARM_ENI_TARGET = 1

# Upper limit on the number of ENIs; unset or below 1 means the instance limit.
ENV_MAX_ENI = "MAX_ENI"
DEFAULT_MAX_ENI = -1

# Whether pods take their security groups and subnet from an ENIConfig resource.
ENV_CUSTOM_NETWORK_CFG = "AWS_VPC_K8S_CNI_CUSTOM_NETWORK_CFG"

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def _environ(env: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if env is None else env


def _parse_int(text: str) -> int | None:
    """Parse a plain signed decimal integer; return None if it is not one."""
    if not _INT_PATTERN.fullmatch(text):
        return None
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        return None
    return value


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid boolean value {text!r}")


def get_max_eni(lower_bound: int, env: Mapping[str, str] | None = None) -> int:
    """Return the lesser of ``lower_bound`` and a positive MAX_ENI setting."""
    env_max = DEFAULT_MAX_ENI
    raw = _environ(env).get(ENV_MAX_ENI)
    if raw is not None:
        value = _parse_int(raw)
        if value is not None and value >= 1:
            log.debug("Using MAX_ENI %d", value)
            env_max = value
    if 1 <= env_max < lower_bound:
        return env_max
    return lower_bound


def get_warm_eni_target(env: Mapping[str, str] | None = None) -> int:
    """Return WARM_ENI_TARGET, or the default when unset, invalid or negative."""
    raw = _environ(env).get(ENV_WARM_ENI_TARGET)
    if raw is None:
        return DEFAULT_WARM_ENI_TARGET
    value = _parse_int(raw)
    if value is None or value < 0:
        return DEFAULT_WARM_ENI_TARGET
    log.debug("Using WARM-ENI-TARGET %d", value)
    return value


def get_warm_ip_target(env: Mapping[str, str] | None = None) -> int:
    """Return WARM_IP_TARGET, or 0 (no target) when unset, invalid or negative."""
    raw = _environ(env).get(ENV_WARM_IP_TARGET)
    if raw is None:
        return NO_WARM_IP_TARGET
    value = _parse_int(raw)
    if value is not None and value >= 0:
        log.debug("Using WARM-IP-TARGET %d", value)
        return value
    return NO_WARM_IP_TARGET


def use_custom_network_cfg(env: Mapping[str, str] | None = None) -> bool:
    """Return whether pods use the network settings of an ENIConfig resource."""
    raw = _environ(env).get(ENV_CUSTOM_NETWORK_CFG, "")
    if raw:
        try:
            return _parse_bool(raw)
        except ValueError as err:
            log.error("Failed to parse %s; using default: false: %s", ENV_CUSTOM_NETWORK_CFG, err)
    return False


def get_config_for_debug(env: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Return the effective values of the pool settings, keyed by variable name."""
    return {
        ENV_WARM_IP_TARGET: get_warm_ip_target(env),
        ENV_WARM_ENI_TARGET: get_warm_eni_target(env),
        ENV_CUSTOM_NETWORK_CFG: use_custom_network_cfg(env),
    }