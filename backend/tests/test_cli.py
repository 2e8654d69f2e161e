from voucherpos.models import CommissionGroup, Retailer, VoucherInventory


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init"])
    second = runner.invoke(args=["system", "init"])

    assert first.exit_code == 0, first.output
    assert "Created commission group" in first.output
    assert "Using existing commission group" in second.output
    assert db_session.query(CommissionGroup).count() == 1


def test_demo_data_and_inspection_commands(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "init", "--demo"])
    assert result.exit_code == 0, result.output
    assert db_session.query(Retailer).filter_by(name="Demo Retailer").count() == 1
    assert db_session.query(VoucherInventory).count() == 10

    availability = runner.invoke(args=["vouchers", "availability"])
    assert "MTN Airtime" in availability.output
    assert "10.00" in availability.output

    retailers = runner.invoke(args=["retailers", "list"])
    assert "Demo Retailer" in retailers.output
    assert "1000.00" in retailers.output


def test_inspection_commands_on_empty_database(app, db_session):
    runner = app.test_cli_runner()

    assert "No available vouchers." in runner.invoke(args=["vouchers", "availability"]).output
    assert "No retailers found." in runner.invoke(args=["retailers", "list"]).output
