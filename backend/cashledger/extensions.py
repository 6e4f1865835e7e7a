# Overview: Flask extension instances for the ledger database and its Alembic migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()

# compare_type so autogenerate notices *_cents column type changes
migrate = Migrate(directory="migrations", compare_type=True)
