"""Entry point: parse config and run the serial-to-WebSocket relay with graceful shutdown."""

import sys

from serial2ws.config import parse_args
from serial2ws.bridge import run_bridge


def main():
    try:
        config = parse_args()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    try:
        run_bridge(config)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
