#!/usr/bin/env python3
"""
Serve HTTP until SIGINT/SIGTERM, then stop the server gracefully.

    python examples/simple_http.py --port 3030
"""

import argparse
import sys
import threading
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer

from daemon_config import with_logger, with_shutdown_grace_duration
from lifecycle_daemon import start
from system_utils import setup_daemon_logger


class HTTPModule:
    def __init__(self, host, port):
        self.server = ThreadingHTTPServer((host, port), SimpleHTTPRequestHandler)

    def start(self, fatal_errors):
        def serve():
            try:
                self.server.serve_forever()
            except Exception as e:
                fatal_errors.send(e)

        threading.Thread(target=serve, name="http-server", daemon=True).start()

    def shutdown(self, ctx):
        self.server.shutdown()
        self.server.server_close()


def main():
    parser = argparse.ArgumentParser(description="Graceful HTTP server example")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=3030)
    args = parser.parse_args()

    logger = setup_daemon_logger("simple_http")
    daemon = start(None, with_logger(logger), with_shutdown_grace_duration(5))

    http_module = HTTPModule(args.host, args.port)
    http_module.start(daemon.fatal_errors_channel())
    logger.info(f"Serving on {args.host}:{args.port}")

    daemon.on_shut_down(http_module.shutdown)

    daemon.wait()
    return daemon.exit_code()


if __name__ == "__main__":
    sys.exit(main())
