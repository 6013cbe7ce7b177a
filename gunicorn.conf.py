"""
Gunicorn settings for the Research Vault API (gunicorn -c gunicorn.conf.py wsgi:app).

Session tokens and wizard file handles live in process memory, so keep a
single worker and scale with threads.
"""

import os

bind = f"{os.environ.get('VAULT_HOST', '127.0.0.1')}:{os.environ.get('VAULT_PORT', '5001')}"
backlog = 2048

workers = int(os.environ.get('VAULT_WORKERS', '1'))
threads = int(os.environ.get('VAULT_THREADS', '8'))
worker_class = 'gthread'
timeout = 120
keepalive = 5

# 0 disables worker recycling
max_requests = int(os.environ.get('VAULT_MAX_REQUESTS', '0'))
max_requests_jitter = 50

accesslog = os.environ.get('VAULT_ACCESS_LOG', '-')
errorlog = os.environ.get('VAULT_ERROR_LOG', '-')
loglevel = os.environ.get('VAULT_LOG_LEVEL', 'info')
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)sus'

proc_name = 'research-vault'
daemon = False


def on_starting(server):
    if workers > 1:
        server.log.warning("VAULT_WORKERS > 1: sign-ins and wizard file selections are not shared between workers")


def post_worker_init(worker):
    """Start token and draft cleanup inside each worker."""
    from vault_be import start_maintenance_thread
    start_maintenance_thread()
