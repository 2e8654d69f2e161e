# backend/voucherpos/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app: Flask-SQLAlchemy builds engines there
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sales import sales_bp
    from .routes.bill_payments import bill_payments_bp
    from .routes.vouchers import vouchers_bp
    from .routes.commissions import commissions_bp
    from .routes.retailers import retailers_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(bill_payments_bp)
    app.register_blueprint(vouchers_bp)
    app.register_blueprint(commissions_bp)
    app.register_blueprint(retailers_bp)

    # Bill payment gateways configured by URL
    from .services.bill_payment_service import HttpBillPaymentVendor, register_vendor
    for provider, base_url in (app.config.get("BILL_PAYMENT_VENDORS") or {}).items():
        register_vendor(app, HttpBillPaymentVendor(provider, base_url, api_key=app.config.get("BILL_PAYMENT_API_KEY")))

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
