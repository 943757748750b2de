from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from config.settings import AlertSettings
from tracker.errors import AlertLimitReached, AlertNotFound, InvalidAddress, InvalidAlert, TokenNotFound
from tracker.models import Price
from tracker.repositories import (
    create_user_alert,
    ensure_token,
    find_alert,
    find_alerts_by_user,
    find_significant_alert_by_chain,
    find_token,
    save_price,
)
from tracker.services.alerts.alert_checker import AlertChecker, calculate_significant_changes
from tracker.services.alerts.alerts_service import AlertsService
from tests.fakes.providers import LINK, USDC, WETH, RecordingSender


async def _seed_price(session_maker, address: str, price: str, timestamp) -> None:
    async with session_maker() as session:
        token = await ensure_token(session, address, "ethereum")
        await save_price(session, Price(token_id=token.id, usd_price=Decimal(price), timestamp=timestamp))


async def _alert(session_maker, *, address=WETH, target="1000", condition="above", email="trader@example.com"):
    async with session_maker() as session:
        return await create_user_alert(
            session,
            token_address=address,
            chain="ethereum",
            target_price=Decimal(target),
            condition=condition,
            user_email=email,
        )


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def make_checker(make_tracker, session_maker, sender, clock):
    def factory(tracker=None, **settings) -> AlertChecker:
        return AlertChecker(
            tracker or make_tracker(),
            sender,
            session_maker,
            chains=["ethereum"],
            settings=AlertSettings(**settings),
            now=clock,
        )

    return factory


class TestUserAlerts:
    async def test_boundary_price_fires_exactly_once(self, make_checker, session_maker, sender, clock):
        await _seed_price(session_maker, WETH, "1000", clock())
        alert = await _alert(session_maker, target="1000", condition="above")
        checker = make_checker()

        first = await checker.check_user_price_alerts()
        second = await checker.check_user_price_alerts()

        assert (first.checked, first.triggered) == (1, 1)
        assert (second.checked, second.triggered) == (0, 0)
        assert len(sender.user_alerts) == 1
        notice = sender.user_alerts[0]
        assert notice["to"] == "trader@example.com"
        assert notice["current_price"] == Decimal("1000")
        assert notice["condition"] == "above"
        async with session_maker() as session:
            stored = await find_alert(session, alert.id)
        assert stored.is_active is False

    async def test_below_condition(self, make_checker, session_maker, sender, clock):
        await _seed_price(session_maker, WETH, "60", clock())
        await _alert(session_maker, target="50", condition="below")
        await _alert(session_maker, target="70", condition="below")
        checker = make_checker()

        summary = await checker.check_user_price_alerts()

        assert (summary.checked, summary.triggered) == (2, 1)
        assert [notice["target_price"] for notice in sender.user_alerts] == [Decimal("70")]

    async def test_concurrent_passes_notify_once(self, make_checker, session_maker, sender, clock):
        await _seed_price(session_maker, WETH, "1500", clock())
        await _alert(session_maker, target="1000", condition="above")
        checker = make_checker()

        await asyncio.gather(checker.check_user_price_alerts(), checker.check_user_price_alerts())

        assert len(sender.user_alerts) == 1

    async def test_missing_price_keeps_alert_active(self, make_checker, session_maker, sender):
        alert = await _alert(session_maker, address=USDC, target="1")
        checker = make_checker()

        summary = await checker.check_user_price_alerts()

        assert summary.no_price == 1
        assert sender.user_alerts == []
        async with session_maker() as session:
            assert (await find_alert(session, alert.id)).is_active is True

    async def test_send_failure_still_deactivates(self, make_tracker, session_maker, clock):
        await _seed_price(session_maker, WETH, "1200", clock())
        alert = await _alert(session_maker, target="1000")
        checker = AlertChecker(
            make_tracker(),
            RecordingSender(fail=True),
            session_maker,
            settings=AlertSettings(),
            now=clock,
        )

        summary = await checker.check_user_price_alerts()

        assert summary.triggered == 1
        async with session_maker() as session:
            assert (await find_alert(session, alert.id)).is_active is False


class TestSignificantChanges:
    def test_batch_contains_only_tokens_over_threshold(self):
        changes = calculate_significant_changes(
            {WETH: Decimal("105"), USDC: Decimal("101"), LINK: Decimal("7")},
            {WETH: Decimal("100"), USDC: Decimal("100")},
            Decimal("3"),
        )
        assert [change.token_address for change in changes] == [WETH]
        assert changes[0].percent_change == Decimal("5")

    async def test_consolidated_notification_and_last_checked(
        self, make_checker, provider, session_maker, sender, clock
    ):
        old_moment = clock() - timedelta(minutes=61)
        await _seed_price(session_maker, WETH, "100", old_moment)
        await _seed_price(session_maker, USDC, "100", old_moment)
        provider.set_price("ethereum", WETH, "105")
        provider.set_price("ethereum", USDC, "101")
        checker = make_checker()

        [result] = await checker.check_significant_price_changes()

        assert result.chain == "ethereum"
        assert result.notified and result.advanced
        assert len(sender.significant) == 1
        batch = sender.significant[0]
        assert batch["to"] == AlertSettings().default_recipient_email
        assert [change.token_address for change in batch["changes"]] == [WETH]
        async with session_maker() as session:
            config = await find_significant_alert_by_chain(session, "ethereum")
        assert config.last_checked_at == clock()
        assert config.time_frame == 60

    @pytest.mark.parametrize("advance_on_empty", [True, False])
    async def test_empty_pass_respects_policy(
        self, make_checker, provider, session_maker, sender, clock, advance_on_empty
    ):
        old_moment = clock() - timedelta(minutes=61)
        await _seed_price(session_maker, WETH, "100", old_moment)
        provider.set_price("ethereum", WETH, "101")
        checker = make_checker(advance_last_checked_on_empty=advance_on_empty)

        [result] = await checker.check_significant_price_changes()

        assert result.changes == []
        assert sender.significant == []
        assert result.advanced is advance_on_empty
        async with session_maker() as session:
            config = await find_significant_alert_by_chain(session, "ethereum")
        assert (config.last_checked_at == clock()) is advance_on_empty

    async def test_provider_failure_does_not_advance(self, make_checker, provider, session_maker, clock):
        await _seed_price(session_maker, WETH, "100", clock() - timedelta(minutes=61))
        provider.batch_error = RuntimeError("provider down")
        checker = make_checker()

        [result] = await checker.check_significant_price_changes()

        assert result.error is not None
        assert result.advanced is False
        async with session_maker() as session:
            config = await find_significant_alert_by_chain(session, "ethereum")
        assert config.last_checked_at < clock()


class TestAlertsService:
    @pytest.fixture
    def service(self, make_tracker, session_maker):
        return AlertsService(make_tracker(), session_maker, AlertSettings(max_alerts_per_user=2))

    async def test_ceiling_is_enforced(self, service, session_maker, clock):
        await _seed_price(session_maker, WETH, "2500", clock())
        for target in ("3000", "3500"):
            await service.create_user_alert(
                token_address=WETH,
                chain="ethereum",
                target_price=target,
                condition="above",
                user_email="Trader@Example.com",
            )

        with pytest.raises(AlertLimitReached):
            await service.create_user_alert(
                token_address=WETH,
                chain="ethereum",
                target_price="4000",
                condition="above",
                user_email="trader@example.com",
            )
        page = await service.get_user_alerts("trader@example.com")
        assert page.total == 2

    async def test_invalid_requests_are_rejected(self, service):
        with pytest.raises(InvalidAlert):
            await service.create_user_alert(
                token_address=WETH, chain="ethereum", target_price="10", condition="sideways", user_email="a@b.c"
            )
        with pytest.raises(InvalidAlert):
            await service.create_user_alert(
                token_address=WETH, chain="ethereum", target_price="-1", condition="above", user_email="a@b.c"
            )
        with pytest.raises(InvalidAddress):
            await service.create_user_alert(
                token_address="0x123", chain="ethereum", target_price="10", condition="above", user_email="a@b.c"
            )

    async def test_untrackable_token_is_rejected(self, service, session_maker):
        with pytest.raises(TokenNotFound):
            await service.create_user_alert(
                token_address=LINK, chain="ethereum", target_price="10", condition="below", user_email="a@b.c"
            )
        async with session_maker() as session:
            assert await find_token(session, LINK, "ethereum") is None
            assert (await find_alerts_by_user(session, "a@b.c")).total == 0

    async def test_get_and_deactivate(self, service, session_maker, clock):
        await _seed_price(session_maker, WETH, "2500", clock())
        alert = await service.create_user_alert(
            token_address=WETH, chain="ethereum", target_price="2000", condition="below", user_email="a@b.c"
        )

        assert (await service.get_user_alert(alert.id)).target_price == Decimal("2000")
        assert await service.deactivate_user_alert(alert.id) is True
        assert await service.deactivate_user_alert(alert.id) is False
        with pytest.raises(AlertNotFound):
            await service.get_user_alert(9999)

    async def test_significant_config_created_with_defaults(self, service):
        config = await service.get_significant_price_alert("Polygon")
        again = await service.get_significant_price_alert("polygon")

        assert config.id == again.id
        assert config.chain == "polygon"
        assert config.threshold_percentage == Decimal("3")
        assert config.time_frame == 60
