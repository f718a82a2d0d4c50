"""
courier_billing/__init__.py

Flask application factory for the Courier Billing back office.

Requirements:
- SQLAlchemy models with Flask-Migrate migrations; SQLite is used for dev.
- JSON API authenticated by JWT (Bearer header or `token` cookie).
- Every permission is enforced server-side, per route.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, jsonify

from .errors import register_error_handlers
from .extensions import csrf, db, login_manager, migrate
from .security import cookie_csrf_guard, load_user_from_request
from .utils import format_date, format_money

# Blueprint imports kept inside create_app() to reduce import side effects.


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("courier_billing").setLevel(level)


def create_app(config_object: str = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    login_manager.init_app(app)

    # No server-side sessions: the user is rebuilt from the JWT on every request.
    login_manager.request_loader(load_user_from_request)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required"}), 401

    # ----------------------------------------------------------------------
    # CSRF for cookie-authenticated writes
    # ----------------------------------------------------------------------
    app.before_request(cookie_csrf_guard)

    register_error_handlers(app)

    app.add_template_filter(format_money, "money")
    app.add_template_filter(format_date, "billdate")

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.bills import bills_bp
    from .blueprints.bookings import bookings_bp
    from .blueprints.imports import imports_bp
    from .blueprints.invoices import invoices_bp
    from .blueprints.masters import masters_bp
    from .blueprints.parties import parties_bp
    from .blueprints.rates import rates_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(masters_bp)
    app.register_blueprint(rates_bp)
    app.register_blueprint(parties_bp)
    app.register_blueprint(bills_bp)
    app.register_blueprint(bookings_bp)
    app.register_blueprint(imports_bp)
    app.register_blueprint(invoices_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables (development shortcut for `flask db upgrade`)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("seed-masters")
    def seed_masters_command():
        """Seed master catalogs and setup reference data."""
        from .seed import run_setup

        run_setup()
        click.echo("Master catalogs and reference data seeded.")

    @app.cli.command("create-user")
    @click.argument("username")
    @click.argument("email")
    @click.option("--role", type=click.Choice(["admin", "billing_operator"]), default="billing_operator")
    @click.password_option()
    def create_user_command(username: str, email: str, role: str, password: str):
        """Create a login user."""
        from .models import User

        if User.query.filter_by(username=username).first():
            raise click.ClickException(f"User {username} already exists.")
        user = User(username=username, email=email, role=role, is_active=True)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f"User {username} ({role}) created.")

    # ----------------------------------------------------------------------
    # Health
    # ----------------------------------------------------------------------
    @app.route("/")
    def index():
        return jsonify({"name": app.config.get("APP_NAME"), "status": "ok"})

    return app
