"""
System utilities for logging and diagnostics

Logger setup shared by daemon applications, and process snapshots that the
shutdown sequence logs at debug level when it starts and finishes.
"""

import logging
import sys
import threading
from datetime import datetime

import psutil


class MicrosecondFormatter(logging.Formatter):
    """Custom formatter that provides microsecond precision timestamps"""
    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created)
        return dt.strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]  # Keep 3 decimal places (milliseconds)


def setup_daemon_logger(name='graceful_daemon', level=logging.INFO, log_file=None):
    """Setup a logger with millisecond timestamps on stdout and, optionally, a file"""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(MicrosecondFormatter('%(asctime)s [%(levelname)s] %(message)s'))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(MicrosecondFormatter(
            '%(asctime)s [%(levelname)8s] %(name)s.%(funcName)s:%(lineno)d - %(message)s'
        ))
        logger.addHandler(file_handler)
        logger.debug(f"Log file: {log_file}")

    return logger


def get_system_state():
    """Get process state information as a dictionary"""
    try:
        proc = psutil.Process()
        memory_info = proc.memory_info()

        children = []
        for child in proc.children(recursive=True):
            try:
                children.append({
                    'pid': child.pid,
                    'name': child.name(),
                    'status': child.status()
                })
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

        threads = [
            {'name': t.name, 'alive': t.is_alive(), 'daemon': t.daemon}
            for t in threading.enumerate()
        ]

        return {
            'process': {
                'pid': proc.pid,
                'status': proc.status(),
                'num_threads': proc.num_threads(),
                'open_files_count': len(proc.open_files()),
            },
            'memory': {
                'rss_mb': memory_info.rss / 1024 / 1024,
                'vms_mb': memory_info.vms / 1024 / 1024
            },
            'children': children,
            'threads': {
                'count': threading.active_count(),
                'details': threads
            },
            'timestamp': datetime.now().isoformat()
        }

    except Exception as e:
        return {
            'error': str(e),
            'timestamp': datetime.now().isoformat()
        }


def log_system_state(logger, phase):
    """Log process state at debug level; does nothing unless debug is enabled"""
    if not logger.isEnabledFor(logging.DEBUG):
        return

    start_time = datetime.now()
    logger.debug(f"=== SYSTEM STATE: {phase} (at {start_time.strftime('%H:%M:%S.%f')[:-3]}) ===")

    system_state = get_system_state()
    if 'error' in system_state:
        logger.error(f"Error getting system state: {system_state['error']}")
        return

    proc_info = system_state['process']
    logger.debug(f"PID: {proc_info['pid']}, Status: {proc_info['status']}")
    logger.debug(f"Memory: RSS={system_state['memory']['rss_mb']:.1f}MB, VMS={system_state['memory']['vms_mb']:.1f}MB")
    logger.debug(f"Threads: {proc_info['num_threads']}, open files: {proc_info['open_files_count']}")
    logger.debug(f"Child processes: {len(system_state['children'])}")

    thread_info = system_state['threads']
    logger.debug(f"Active Python threads: {thread_info['count']}")
    for thread in thread_info['details']:
        logger.debug(f"  Thread: {thread['name']} (alive: {thread['alive']}, daemon: {thread['daemon']})")

    duration = (datetime.now() - start_time).total_seconds() * 1000  # milliseconds
    logger.debug(f"=== END SYSTEM STATE: {phase} (duration: {duration:.2f}ms) ===")
