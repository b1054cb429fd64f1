from __future__ import annotations

import argparse
import logging
import signal
from typing import List

from pydantic import ValidationError

from .advertiser import BaseAdvertiser, load_advertiser
from .config.config_parser import BeaconConfig, load_config
from .config.logging_config import init_logging
from .engine import DiscoveryEngine
from .notify import ADVERTISEMENT, NotificationBus, log_advertisement
from .peers import FilePeerDirectory, HostIdentity, StaticPeerDirectory
from .service import DiscoveryService
from .transports.multicast import MulticastSocket


def build_peer_directory(cfg: BeaconConfig):
    """Brief: Build the local peer directory from the ``peers`` section.

    Inputs:
      - cfg: BeaconConfig.

    Outputs:
      - FilePeerDirectory when peers.file is set (static names are added to
        the file contents), otherwise StaticPeerDirectory. The own node name
        is always listed so known-answer queries naming us trigger a refresh.
    """

    names = list(cfg.peers.names)
    own = cfg.discovery.node.split("@", 1)[0]
    if own not in names:
        names.insert(0, own)
    if cfg.peers.file:
        return FilePeerDirectory(cfg.peers.file, extra=names)
    return StaticPeerDirectory(names)


def build_service(
    cfg: BeaconConfig, bus: NotificationBus, advertiser: BaseAdvertiser
) -> DiscoveryService:
    """Brief: Wire collaborators from config into a supervised DiscoveryService.

    Inputs:
      - cfg: BeaconConfig.
      - bus: NotificationBus shared by every engine incarnation.
      - advertiser: Advertiser shared by every engine incarnation.

    Outputs:
      - DiscoveryService whose factory builds a fresh engine and socket.
    """

    disc = cfg.discovery
    mcast = disc.multicast
    host = HostIdentity(disc.hostname)
    peers = build_peer_directory(cfg)

    def engine_factory() -> DiscoveryEngine:
        return DiscoveryEngine(
            disc.service,
            disc.domain,
            disc.node,
            advertiser=advertiser,
            bus=bus,
            peers=peers,
            host=host,
            socket=MulticastSocket(
                mcast.group,
                mcast.port,
                mcast.interface,
                loopback=mcast.loopback,
                recv_buffer=mcast.recv_buffer,
                poll_interval=mcast.poll_interval,
            ),
        )

    sup = cfg.supervisor
    return DiscoveryService(
        engine_factory,
        max_restarts=sup.max_restarts,
        restart_window_seconds=sup.restart_window_seconds,
        backoff_base_seconds=sup.backoff_base_seconds,
        backoff_max_seconds=sup.backoff_max_seconds,
    )


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the discovery listener.
    Parses arguments, loads configuration, wires collaborators and runs the
    supervised discovery engine until a termination signal arrives.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 on clean shutdown, 1 on configuration or startup
        failure or when the engine keeps failing.

    Example use:
        CLI:
            PYTHONPATH=src python -m beacon.main --config config.yaml
    """
    parser = argparse.ArgumentParser(description="mDNS peer-discovery listener")
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument(
        "-v",
        "--var",
        dest="vars",
        action="append",
        default=[],
        metavar="KEY=YAML",
        help="Set a config variable (overrides environment and config file)",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate the configuration and exit",
    )
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config, cli_vars=args.vars)
    except (OSError, ValueError, ValidationError) as exc:
        print(str(exc))
        return 1

    if args.check:
        print(f"{args.config}: configuration OK")
        return 0

    init_logging(cfg.logging)
    logger = logging.getLogger("beacon.main")
    logger.info("Loaded config from %s", args.config)

    bus = NotificationBus()
    bus.subscribe(ADVERTISEMENT, log_advertisement)
    try:
        advertiser = load_advertiser(cfg.advertiser.module)
    except (ImportError, AttributeError, TypeError, ValueError) as exc:
        logger.error("Cannot build advertiser: %s", exc)
        bus.close()
        return 1

    service = build_service(cfg, bus, advertiser)

    def _request_shutdown(signum, _frame) -> None:
        logger.info("Received %s, initiating shutdown", signal.Signals(signum).name)
        service.stop()

    for sig_name in ("SIGTERM", "SIGINT", "SIGHUP"):
        sig = getattr(signal, sig_name, None)
        if sig is None:
            continue
        try:
            signal.signal(sig, _request_shutdown)
            logger.debug("Installed %s handler for clean shutdown", sig_name)
        except (OSError, ValueError):
            logger.warning("Could not install %s handler on this platform", sig_name)

    try:
        exit_code = service.run()
    finally:
        advertiser.close()
        bus.close()
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
