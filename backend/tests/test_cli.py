# Overview: Tests for the Flask CLI command groups.

from oudledger.models import GiftCard, Material


class TestGiftCardCommands:
    def test_issue(self, runner, db_session):
        result = runner.invoke(args=["giftcards", "issue", "--amount-cents", "2500", "--user-id", "1"])

        assert result.exit_code == 0, result.output
        assert "PASS Issued gift card PO-" in result.output
        assert "Amount: 25.00 AED" in result.output
        assert db_session.query(GiftCard).count() == 1

    def test_issue_rejects_bad_expiry(self, runner, db_session):
        result = runner.invoke(args=[
            "giftcards", "issue", "--amount-cents", "2500", "--user-id", "1", "--expires-at", "soon",
        ])
        assert result.exit_code != 0
        assert db_session.query(GiftCard).count() == 0

    def test_issue_rejects_zero_amount(self, runner, db_session):
        result = runner.invoke(args=["giftcards", "issue", "--amount-cents", "0", "--user-id", "1"])
        assert result.exit_code == 1
        assert "amount_cents must be positive" in result.output

    def test_expire_is_idempotent(self, runner, expired_card):
        first = runner.invoke(args=["giftcards", "expire"])
        second = runner.invoke(args=["giftcards", "expire"])

        assert first.exit_code == 0
        assert "Expired 1 gift card(s)." in first.output
        assert "Expired 0 gift card(s)." in second.output

    def test_balance(self, runner, make_card):
        card = make_card(amount_cents=12345)
        result = runner.invoke(args=["giftcards", "balance", card.code])

        assert result.exit_code == 0
        assert f"{card.code}: 123.45 AED (ACTIVE)" in result.output

    def test_balance_unknown(self, runner, db_session):
        result = runner.invoke(args=["giftcards", "balance", "PO-0000-0000-0000"])
        assert result.exit_code == 1
        assert "Gift card not found" in result.output

    def test_report(self, runner, make_card):
        make_card(amount_cents=1000)
        result = runner.invoke(args=[
            "giftcards", "report", "--start", "2000-01-01T00:00:00Z", "--end", "2100-01-01T00:00:00Z",
        ])

        assert result.exit_code == 0
        assert '"total_value_cents": 1000' in result.output


class TestMaterialCommands:
    def test_seed_and_list(self, runner, db_session):
        seeded = runner.invoke(args=["materials", "seed"])
        again = runner.invoke(args=["materials", "seed"])
        listed = runner.invoke(args=["materials", "list"])

        assert "PASS Seeded 6 material(s)." in seeded.output
        assert "PASS Seeded 0 material(s)." in again.output
        assert "Royal Oud Oil" in listed.output
        assert db_session.query(Material).count() == 6

    def test_list_empty(self, runner, db_session):
        result = runner.invoke(args=["materials", "list"])
        assert "No materials" in result.output


class TestConvertCommand:
    def test_convert_standard(self, runner, db_session):
        result = runner.invoke(args=["convert", "2", "tola", "gram"])

        assert result.exit_code == 0
        assert "23.3200 gram" in result.output
        assert "standard (high)" in result.output

    def test_convert_default_density_warns(self, runner, db_session):
        result = runner.invoke(args=["convert", "3", "tola", "ml"])

        assert result.exit_code == 0
        assert "41.1529 ml" in result.output
        assert "WARN Using default density" in result.output

    def test_convert_no_path(self, runner, db_session):
        result = runner.invoke(args=["convert", "1", "piece", "gram"])
        assert result.exit_code == 1
        assert "No conversion path found from piece to gram" in result.output
