import shlex

import pytest

import bfbridge.lib.peer as peer

from bfbridge.lib.common import RemoteExecError
from bfbridge.lib.remote import RemoteResult


def test_resolv_content_dual(make_config):
    content = peer.render_resolv_content(make_config(mode="dual"))

    assert content.splitlines() == [
        "nameserver fd00:bf3::1",
        "nameserver 192.168.100.1",
    ]


@pytest.mark.parametrize(
    "mode, expected",
    [("ipv4", ["nameserver 192.168.100.1"]), ("ipv6", ["nameserver fd00:bf3::1"])],
)
def test_resolv_content_single(make_config, mode, expected):
    assert peer.render_resolv_content(make_config(mode=mode)).splitlines() == expected


def test_parameters_follow_mode(make_config):
    parameters = peer.build_parameters(make_config(mode="ipv4"))

    assert parameters["USE_V4"] == "1"
    assert parameters["USE_V6"] == "0"
    assert parameters["BF_V4_ADDR"] == "192.168.100.2/24"
    assert parameters["BF_V4_IP"] == "192.168.100.2"
    assert parameters["HOST_V4_IP"] == "192.168.100.1"
    assert parameters["ROUTE_METRIC"] == "10"


def test_payload_quoting():
    payload = peer.render_payload(
        {"BF_LINK_IF": "tmfifo_net0; rm -rf /", "RESOLV_CONTENT": "a\nb'c"}
    )
    first, second = payload.split("\n", 1)

    assert first == "BF_LINK_IF='tmfifo_net0; rm -rf /'"
    # The quoted value splits back to exactly one word with the input text
    name, value = second.split("=", 1)
    assert name == "RESOLV_CONTENT"
    assert shlex.split(value) == ["a\nb'c"]


def test_payload_rejects_bad_names():
    with pytest.raises(ValueError):
        peer.render_payload({"lower": "x"})
    with pytest.raises(ValueError):
        peer.render_payload({"A=B; id": "x"})


def test_script_layout(make_config):
    script = peer.build_peer_script(make_config(mode="dual"))
    lines = script.splitlines()

    assert lines[0] == "set -euo pipefail"
    assert lines[1].startswith("BF_LINK_IF=")
    assert script.endswith(peer.PEER_PROGRAM.lstrip("\n"))


def test_program_interpolates_nothing(make_config):
    # Values only reach the program through the quoted header
    script = peer.build_peer_script(make_config(mode="ipv4", link_if="tmfifo_net7"))

    assert "tmfifo_net7" not in peer.PEER_PROGRAM
    assert script.count("tmfifo_net7") == 1


def test_program_disables_ra_before_default_route():
    program = peer.PEER_PROGRAM
    route_add = program.index('route add default via "${HOST_V6_IP}"')

    assert program.index("net.ipv6.conf.all.accept_ra=0") < route_add
    assert program.index("accept_ra=0\" >/dev/null") < route_add
    assert program.index("route del default proto ra") < route_add


def test_program_replaces_all_default_routes():
    program = peer.PEER_PROGRAM

    assert "while ${SUDO} ip -4 route del default" in program
    assert "while ${SUDO} ip -6 route del default 2>/dev/null" in program
    assert 'metric "${ROUTE_METRIC}"' in program


def test_configure_peer(make_config, logger, session):
    result = peer.configure_peer(session, make_config(mode="dual"), logger)

    assert result.retcode == 0
    assert session.calls == ["bash -s"]
    assert session.scripts[0].startswith("set -euo pipefail\n")


def test_configure_peer_failure(make_config, logger, make_session):
    session = make_session(
        script_result=RemoteResult(2, "", "RTNETLINK answers: Invalid argument\n")
    )

    with pytest.raises(RemoteExecError) as e:
        peer.configure_peer(session, make_config(), logger)
    assert e.value.retcode == 2
    assert "Invalid argument" in str(e.value)
