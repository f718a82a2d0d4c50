from courier_billing.models import Mode, User


def test_seed_masters_is_repeatable(app):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["seed-masters"])
    second = runner.invoke(args=["seed-masters"])

    assert first.exit_code == 0
    assert "seeded" in second.output
    with app.app_context():
        assert Mode.query.count() == 2


def test_create_user(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["create-user", "clerk", "clerk@example.com", "--password", "pw12345"])
    assert result.exit_code == 0
    assert "clerk (billing_operator) created" in result.output

    again = runner.invoke(args=["create-user", "clerk", "clerk@example.com", "--password", "pw12345"])
    assert again.exit_code != 0
    assert "already exists" in again.output

    with app.app_context():
        user = User.query.filter_by(username="clerk").one()
        assert user.check_password("pw12345")
        assert user.role == "billing_operator"
