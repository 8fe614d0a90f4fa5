# Overview: Flask extension instances for database, migrations and event fan-out.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.event_service import EventNotifier

db = SQLAlchemy()
migrate = Migrate()
notifier = EventNotifier()
