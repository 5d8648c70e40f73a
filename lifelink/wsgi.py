"""
WSGI config for the LifeLink project.

Used by synchronous servers (gunicorn, uwsgi) for the REST API.  The
hospital WebSocket feed needs the ASGI entrypoint in ``lifelink.asgi``.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'lifelink.settings')

application = get_wsgi_application()
