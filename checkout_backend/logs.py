"""
Structured JSON logging.

Every line written to stdout is one JSON document so the output can be
shipped as-is to a log collector.
"""

import json
import os
import socket
import sys
import traceback
from datetime import datetime, timezone

SERVICE_VERSION = '1.0.0'


def _service_block():
    return {
        'name': os.getenv('SERVICE_NAME', 'checkout-backend'),
        'version': SERVICE_VERSION,
        'environment': os.getenv('ENVIRONMENT', 'development')
    }


def log_json(level: str, message: str, **context):
    log_entry = {
        '@timestamp': datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
        'message': message,
        'log': {'level': level},
        'service': _service_block(),
        'host': {'name': socket.gethostname()}
    }
    log_entry.update(context)
    print(json.dumps(log_entry, default=str), file=sys.stdout, flush=True)


def log_exception(level: str, message: str, exc: Exception = None, **context):
    """Log with the full stack trace of ``exc`` attached."""
    log_entry = {
        '@timestamp': datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
        'message': message,
        'log': {'level': level},
        'service': _service_block(),
        'host': {'name': socket.gethostname()}
    }

    if exc is not None:
        tb_str = None
        if exc.__traceback__ is not None:
            tb_str = ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))

        # Exception was constructed but never raised
        if not tb_str:
            tb_str = f"{type(exc).__name__}: {exc}"

        log_entry['exception'] = {
            'type': type(exc).__name__,
            'message': str(exc),
            'stacktrace': tb_str
        }

        if level == 'ERROR':
            print(f"\n{'=' * 80}", file=sys.stderr, flush=True)
            print(f"ERROR: {message}", file=sys.stderr, flush=True)
            print(f"Service: {log_entry['service']['name']} | Environment: {log_entry['service']['environment']}",
                  file=sys.stderr, flush=True)
            print(f"{'=' * 80}", file=sys.stderr, flush=True)
            print(tb_str, file=sys.stderr, flush=True)
            print(f"{'=' * 80}\n", file=sys.stderr, flush=True)

    log_entry.update(context)
    print(json.dumps(log_entry, default=str), file=sys.stdout, flush=True)
