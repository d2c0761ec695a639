# Overview: Pytest coverage for the Flask CLI command groups.

from stockledger.models import User


class TestSystemCommands:

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init"])
        assert result.exit_code == 0
        assert "PASS Created user: admin" in result.output
        assert db_session.query(User).count() == 3

        result = runner.invoke(args=["system", "init"])
        assert "SKIP User exists: admin" in result.output
        assert db_session.query(User).count() == 3


class TestUserCommands:

    def test_create_and_list(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create", "--username", "ama", "--role", "Sales", "--max-discount-bps", "500",
        ])
        assert result.exit_code == 0

        result = runner.invoke(args=["users", "list"])
        assert "ama" in result.output
        assert "5.00%" in result.output

    def test_duplicate_username(self, app, db_session, sales_user):
        result = app.test_cli_runner().invoke(args=["users", "create", "--username", "sales"])
        assert result.exit_code == 1
        assert "FAIL Username already exists" in result.output


class TestProductCommands:

    def test_availability(self, app, db_session, make_product):
        product = make_product(quantity_on_hand=4)
        result = app.test_cli_runner().invoke(args=["products", "availability", str(product.id), "999999"])
        assert result.exit_code == 0
        assert "999999 not found" in result.output

    def test_adjust_and_events(self, app, db_session, make_product, manager_user):
        product = make_product(quantity_on_hand=1)
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            "products", "adjust", str(product.id), "6", "--reason", "Cycle count", "--user", "manager",
        ])
        assert result.exit_code == 0
        assert "on hand is now 6" in result.output

        result = runner.invoke(args=["products", "events", str(product.id)])
        assert "STOCK_ADJUSTED" in result.output

    def test_adjust_failure_reports_code(self, app, db_session, make_product):
        product = make_product(quantity_on_hand=1)
        result = app.test_cli_runner().invoke(args=["products", "adjust", str(product.id), "2", "--reason", " "])
        assert result.exit_code == 1
        assert "FAIL REASON_REQUIRED" in result.output
