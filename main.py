import argparse
import sys

from tcpgate.config import ConfigError, load_config
from tcpgate.core import run_gate
from tcpgate.logger import GateLogger, setup_logging


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="TCP gate with optional Basic-Auth and idle timeout.")
    parser.add_argument("-e", "--env-file", help="dotenv file to load before reading GATE_* variables")
    parser.add_argument("-l", "--log-level", help="override GATE_LOG_LEVEL")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    log = GateLogger()
    try:
        config = load_config(args.env_file)
    except ConfigError as exc:
        setup_logging(args.log_level or "INFO", None)
        log.startup_failed(exc)
        sys.exit(1)

    setup_logging(args.log_level or config.log_level, config.log_path or None)
    log.config(config)
    try:
        run_gate(config, log)
    except OSError as exc:
        log.startup_failed(exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
