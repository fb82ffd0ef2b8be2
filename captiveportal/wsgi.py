"""
WSGI config for the captive portal project.

Served by gunicorn: gunicorn captiveportal.wsgi:application --workers 4
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "captiveportal.settings")

application = get_wsgi_application()
