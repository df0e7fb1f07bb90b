import logging
import threading
from decimal import Decimal
from uuid import uuid4

from ledger.side_effects import BackgroundDispatcher, ChargePosted, InlineDispatcher


def make_event():
    return ChargePosted(
        transaction_id=uuid4(),
        member_id=uuid4(),
        business_id=uuid4(),
        amount=Decimal("5.00"),
        description="Coffee",
        source="kiosk",
        balance_before=Decimal("20.00"),
        balance_after=Decimal("15.00"),
    )


class TestDispatchers:
    def test_inline_runs_every_handler(self, caplog):
        """Test a failing handler is logged and later handlers still run."""
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        dispatcher = InlineDispatcher([broken])
        dispatcher.subscribe(seen.append)

        with caplog.at_level(logging.ERROR, logger="pdca.side_effects"):
            dispatcher.publish(make_event())

        assert len(seen) == 1
        assert "Side effect broken failed" in caplog.text

    def test_background_runs_off_thread(self):
        """Test handlers run on the worker pool, not the caller's thread."""
        done = threading.Event()
        threads = []

        def handler(event):
            threads.append(threading.current_thread().name)
            done.set()

        dispatcher = BackgroundDispatcher([handler], max_workers=1)
        dispatcher.publish(make_event())

        assert done.wait(timeout=5)
        dispatcher.shutdown()
        assert threads[0].startswith("pdca-side-effects")

    def test_publish_after_shutdown_is_dropped(self, caplog):
        """Test publishing to a stopped dispatcher logs instead of raising."""
        dispatcher = BackgroundDispatcher([lambda event: None])
        dispatcher.shutdown()

        with caplog.at_level(logging.WARNING, logger="pdca.side_effects"):
            dispatcher.publish(make_event())

        assert "dropping side effect" in caplog.text
