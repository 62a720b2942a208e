# Gunicorn configuration for Keepsake
# Handles scheduler ownership across multiple workers

import os
import logging

logger = logging.getLogger('gunicorn.error')


def post_fork(server, worker):
    """
    Called after a worker is forked, before it loads the app.

    Designates the first spawned worker (worker.age == 1) as the scheduler
    owner. The remaining workers serve HTTP only.

    Args:
        server: Gunicorn arbiter
        worker: Gunicorn worker instance (not yet loaded the app)
    """
    if worker.age == 1:
        os.environ['SCHEDULER_WORKER'] = 'true'
        logger.info(f"Worker PID {worker.pid}: scheduler owner")
    else:
        os.environ['SCHEDULER_WORKER'] = 'false'
        logger.info(f"Worker PID {worker.pid}: HTTP only, scheduler disabled")
