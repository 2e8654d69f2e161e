# Overview: Flask extension instances (SQLAlchemy models/session, Alembic migrations).

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Services use db.session directly; SqlSettlementRepository wraps it for settlements.
db = SQLAlchemy()
migrate = Migrate()
