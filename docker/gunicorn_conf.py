# Gunicorn configuration for dbkeeper
# Exactly one worker owns the backup scheduler

import os
import logging

logger = logging.getLogger('gunicorn.error')

wsgi_app = 'dbkeeper:create_app()'


def post_fork(server, worker):
    """
    Designate the first spawned worker (worker.age == 1) as the backup scheduler owner.

    Runs in the worker before the app is loaded, so create_app() sees
    SCHEDULER_WORKER. Every other worker serves HTTP only, so backup cycles
    never run twice against the same bucket.

    Args:
        server: Gunicorn arbiter
        worker: Gunicorn worker instance (uses 'age' attribute: 1, 2, 3, ...)
    """
    if worker.age == 1:
        os.environ['SCHEDULER_WORKER'] = 'true'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): Designated as backup scheduler owner")
    else:
        os.environ['SCHEDULER_WORKER'] = 'false'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): HTTP worker (backup scheduler disabled)")
