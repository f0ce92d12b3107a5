import pytest

from eniipam.config import (
    ENV_CUSTOM_NETWORK_CFG,
    ENV_WARM_ENI_TARGET,
    ENV_WARM_IP_TARGET,
    get_config_for_debug,
    get_max_eni,
    get_warm_eni_target,
    get_warm_ip_target,
    use_custom_network_cfg,
)


def test_warm_ip_target_set():
    assert get_warm_ip_target({"WARM_IP_TARGET": "5"}) == 5


def test_warm_ip_target_unset():
    assert get_warm_ip_target({}) == 0


def test_warm_ip_target_non_integer():
    assert get_warm_ip_target({"WARM_IP_TARGET": "non-integer-string"}) == 0


@pytest.mark.parametrize("raw", ["-3", " 5", "5.0", "", "1_0"])
def test_warm_ip_target_rejected_values(raw):
    assert get_warm_ip_target({"WARM_IP_TARGET": raw}) == 0


def test_warm_ip_target_reads_process_environment(monkeypatch):
    monkeypatch.setenv("WARM_IP_TARGET", "7")
    assert get_warm_ip_target() == 7


@pytest.mark.parametrize(
    ("raw", "lower_bound", "expected"),
    [
        ("5", 10, 5),
        ("5", 4, 4),
        ("0", 4, 4),
        ("1", 4, 1),
        (None, 10, 10),
        ("non-integer-string", 10, 10),
    ],
)
def test_get_max_eni(raw, lower_bound, expected):
    env = {} if raw is None else {"MAX_ENI": raw}
    assert get_max_eni(lower_bound, env) == expected


def test_get_max_eni_negative_is_ignored():
    assert get_max_eni(6, {"MAX_ENI": "-2"}) == 6


def test_get_max_eni_process_environment(monkeypatch):
    monkeypatch.setenv("MAX_ENI", "2")
    assert get_max_eni(8) == 2


@pytest.mark.parametrize(
    ("env", "expected"),
    [
        ({}, 1),
        ({"WARM_ENI_TARGET": "2"}, 2),
        ({"WARM_ENI_TARGET": "0"}, 0),
        ({"WARM_ENI_TARGET": "-1"}, 1),
        ({"WARM_ENI_TARGET": "many"}, 1),
    ],
)
def test_get_warm_eni_target(env, expected):
    assert get_warm_eni_target(env) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("true", True),
        ("TRUE", True),
        ("1", True),
        ("t", True),
        ("false", False),
        ("0", False),
        ("F", False),
        ("yes", False),
        ("", False),
    ],
)
def test_use_custom_network_cfg(raw, expected):
    assert use_custom_network_cfg({ENV_CUSTOM_NETWORK_CFG: raw}) is expected


def test_use_custom_network_cfg_unset():
    assert use_custom_network_cfg({}) is False


def test_get_config_for_debug_defaults():
    assert get_config_for_debug({}) == {
        ENV_WARM_IP_TARGET: 0,
        ENV_WARM_ENI_TARGET: 1,
        ENV_CUSTOM_NETWORK_CFG: False,
    }


def test_get_config_for_debug_values():
    env = {
        "WARM_IP_TARGET": "10",
        "WARM_ENI_TARGET": "3",
        "AWS_VPC_K8S_CNI_CUSTOM_NETWORK_CFG": "true",
    }
    assert get_config_for_debug(env) == {
        "WARM_IP_TARGET": 10,
        "WARM_ENI_TARGET": 3,
        "AWS_VPC_K8S_CNI_CUSTOM_NETWORK_CFG": True,
    }