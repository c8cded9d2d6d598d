# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

import os

# One worker: the JSON document store and the task queue live in-process
workers = 1
worker_class = 'sync'
timeout = 300  # A webhook delta or a 50-event batch with rate limiting can take a while
keepalive = 2

bind = f"0.0.0.0:{os.environ.get('PORT', '10000')}"

# Logging
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
accesslog = '-'
errorlog = '-'

# Don't preload - the worker owns the task thread
preload_app = False

# Process naming
proc_name = 'calendar-mirror'

# Worker lifecycle settings
max_requests = 0  # Restarting would drop in-flight scheduled tasks until re-armed
max_requests_jitter = 0


def post_worker_init(worker):
    """Start the continuation task worker inside the serving process"""
    import app
    app.start_background_worker()
    worker.log.info("Task worker started in gunicorn worker")


def worker_exit(server, worker):
    import app
    app.app.config['COMPONENTS'].task_queue.stop()


print(f"Gunicorn binding to {bind}")
