import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'ride_backend.settings.settings')

application = get_wsgi_application()
