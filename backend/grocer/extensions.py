# Overview: Shared Flask extension instances (ORM session and Alembic migrations).

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
migrate = Migrate()
