"""
Main command-line interface for pyavrctl.

Hosts the Alexa skill web service and keeps a telnet connection open to the
AVR. Alexa POSTs skill requests to the web service, which translates them
into AVR commands and answers once the AVR confirms the change.
"""

import argparse
import logging

from pyavrctl.dispatcher import DEFAULT_REQUEST_TIMEOUT
from pyavrctl.listener import LoggingListener
from pyavrctl.receiver import AvrReceiver
from pyavrctl.web import run_app


def port_number(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("Port provided not valid")
    if not (0 < port < 65536):
        raise argparse.ArgumentTypeError("Port provided not valid")
    return port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="A self hosted Alexa skill to control a network-enabled Pioneer AVR through telnet commands."
    )
    parser.add_argument("host", help="Specify the host / ip of the AVR")
    parser.add_argument("port", type=port_number, help="Specify the telnet port of the AVR (usually 8102 or 23)")
    parser.add_argument("-p", "--listen-port", dest="listen_port", type=port_number, default=8080,
                        help="Specify the port to run the skill web service on (default: 8080)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_REQUEST_TIMEOUT,
                        help=f"Seconds to wait for the AVR to confirm a command (default: {DEFAULT_REQUEST_TIMEOUT})")
    parser.add_argument("--skill-id", help="Only accept requests for this Alexa application id")
    parser.add_argument("--no-heartbeat", action="store_true", help="Disable periodic status polling")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    receiver = AvrReceiver(
        args.host,
        args.port,
        enable_heartbeat=not args.no_heartbeat,
        request_timeout=args.timeout,
    )
    receiver.register_listener(LoggingListener(logging.getLogger("pyavrctl.avr")))
    run_app(receiver, port=args.listen_port, application_id=args.skill_id)


if __name__ == "__main__":
    main()
