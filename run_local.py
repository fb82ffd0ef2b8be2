"""
Local development server using SQLite and the log-only gateway.
Usage: python run_local.py
"""
import os

import django

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'captiveportal.settings')
os.environ.setdefault('DEBUG', 'True')
os.environ.setdefault('ACCESS_GATEWAY_BACKEND', 'access.gateway.LoggingGateway')
os.environ.setdefault('DB_NAME', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'local_db.sqlite3'))

django.setup()

from django.core.management import call_command  # noqa: E402

if __name__ == '__main__':
    # Run migrations first
    print("🔄 Running migrations...")
    call_command('migrate', verbosity=1)
    call_command('seed_packages')
    print("✅ Database ready!")
    print("")

    # Start server
    call_command('runserver', '0.0.0.0:8000')
