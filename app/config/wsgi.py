"""
WSGI config for the payment and refund engine.

Provided as a fallback for WSGI servers; the primary entry point is ASGI
via Uvicorn.

https://docs.djangoproject.com/en/5.2/howto/deployment/wsgi/
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
