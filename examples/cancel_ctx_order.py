#!/usr/bin/env python3
"""
Teardown in LIFO order with the daemon context canceled half way through.

The worker runs on daemon.context() until CANCEL_CTX cancels it, teardown
then waits for the worker and closes the "database" last.
"""

import sys
import threading
import time

from contexts import sleep
from daemon_config import options_from_env, with_logger, with_max_signal_count
from lifecycle_daemon import CANCEL_CTX, start
from system_utils import setup_daemon_logger


class Worker:
    def __init__(self, ctx, logger):
        self.logger = logger
        self._thread = threading.Thread(target=self._run, args=(ctx,), name="worker", daemon=True)

    def start(self):
        self._thread.start()

    def _run(self, ctx):
        ticks = 0
        while sleep(ctx, 1.0):
            ticks += 1
            self.logger.info(f"Worker tick {ticks}")
        self.logger.info(f"Worker stopped: {ctx.err()}")

    def join(self, ctx):
        timeout = None
        if ctx.deadline is not None:
            timeout = max(ctx.deadline - time.monotonic(), 0)
        self._thread.join(timeout)


class Database:
    def __init__(self, logger):
        self.logger = logger

    def close(self, ctx):
        self.logger.info("Database closed")


def main():
    logger = setup_daemon_logger("cancel_ctx_order")
    daemon = start(None, with_logger(logger), with_max_signal_count(2), *options_from_env())

    worker = Worker(daemon.context(), logger)
    worker.start()
    db = Database(logger)

    daemon.defer(
        db.close,     # finally, close the database
        worker.join,  # wait for the worker to notice the cancellation
        CANCEL_CTX,   # then cancel the daemon context
    )

    logger.info("Running, press Ctrl+C to stop (twice to force)")
    daemon.wait()
    return daemon.exit_code()


if __name__ == "__main__":
    sys.exit(main())
