from __future__ import annotations

import pytest

from main import build_parser
from pyavrctl.dispatcher import DEFAULT_REQUEST_TIMEOUT


def test_defaults():
    args = build_parser().parse_args(["192.168.1.20", "8102"])
    assert args.host == "192.168.1.20"
    assert args.port == 8102
    assert args.listen_port == 8080
    assert args.timeout == DEFAULT_REQUEST_TIMEOUT
    assert args.skill_id is None
    assert not args.no_heartbeat
    assert not args.debug


def test_options():
    args = build_parser().parse_args(
        ["avr.local", "23", "-p", "9000", "--timeout", "3.5", "--skill-id", "amzn1.ask.skill.x",
         "--no-heartbeat", "--debug"]
    )
    assert args.listen_port == 9000
    assert args.timeout == 3.5
    assert args.skill_id == "amzn1.ask.skill.x"
    assert args.no_heartbeat
    assert args.debug


@pytest.mark.parametrize("port", ["0", "65536", "telnet"])
def test_invalid_port_is_rejected(port):
    with pytest.raises(SystemExit):
        build_parser().parse_args(["avr.local", port])
