import pytest

from courier_billing import create_app
from courier_billing.extensions import db
from courier_billing.models import DistanceSlab, Mode, Party, ServiceType, User, WeightSlab
from courier_billing.security import create_access_token
from courier_billing.seed import run_setup


# Requests must run outside any pushed app context: Flask-Login caches the
# loaded user on `g`, which lives as long as the app context does.


@pytest.fixture
def app():
    app = create_app("config.TestingConfig")
    with app.app_context():
        run_setup()
        for username, role in (("admin", "admin"), ("operator", "billing_operator")):
            user = User(username=username, email=f"{username}@example.com", role=role, is_active=True)
            user.set_password("secret123")
            db.session.add(user)
        db.session.commit()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def bearer(app, username):
    with app.app_context():
        user = User.query.filter_by(username=username).one()
        return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def admin_headers(app):
    return bearer(app, "admin")


@pytest.fixture
def operator_headers(app):
    return bearer(app, "operator")


@pytest.fixture
def catalog(app):
    """Seeded catalog ids: first mode/service/distance plus weight slabs by name."""
    with app.app_context():
        return {
            "mode_id": Mode.query.filter_by(code="AIR").one().id,
            "service_type_id": ServiceType.query.filter_by(code="EXPRESS").one().id,
            "distance_slab_id": DistanceSlab.query.filter_by(code="METRO_CITIES").one().id,
            "weights": {w.slab_name: w.id for w in WeightSlab.query.all()},
        }


def make_party(app, name="Acme Traders", phone="9876543210"):
    with app.app_context():
        party = Party(party_name=name, phone=phone, address="12 MG Road", city="Rewa", gst_type="unregistered")
        db.session.add(party)
        db.session.commit()
        return party.id


@pytest.fixture
def party_id(app):
    return make_party(app)


@pytest.fixture
def rate_payload(catalog, party_id):
    def build(**overrides):
        payload = {
            "party_id": party_id,
            "shipment_type": "DOCUMENT",
            "mode_id": catalog["mode_id"],
            "service_type_id": catalog["service_type_id"],
            "distance_slab_id": catalog["distance_slab_id"],
            "slab_id": catalog["weights"]["0-100g"],
            "rate": "50",
            "fuel_pct": "10",
            "packing": "0",
            "handling": "0",
            "gst_pct": "18",
        }
        payload.update(overrides)
        return payload

    return build
