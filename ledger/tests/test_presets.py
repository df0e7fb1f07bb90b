"""
Tests for automatic preset amount tuning
"""

from decimal import Decimal
from uuid import uuid4

from ledger.config import Settings
from ledger.models import PostChargeRequest
from ledger.presets import PresetAmountTuner, compute_updated_presets
from ledger.service import LedgerService
from ledger.side_effects import InlineDispatcher
from ledger.storage import DEMO_BUSINESS_ID, DEMO_MEMBER_ID, InMemoryStorage


def amounts(*values):
    return [Decimal(str(v)) for v in values]


class TestComputeUpdatedPresets:
    """Tests for the pure preset calculation."""

    def test_adds_amount_at_threshold(self):
        """Test an amount seen threshold times is added in sorted position."""
        updated = compute_updated_presets([5, 10, 15, 20], Decimal("12"), amounts(12, 12, 12, 12, 12), 5, 9)

        assert updated == [5, 10, 12, 15, 20]

    def test_below_threshold_is_unchanged(self):
        """Test nothing changes until the threshold is reached."""
        assert compute_updated_presets([5, 10], Decimal("12"), amounts(12, 12, 12, 12), 5, 9) is None

    def test_existing_preset_is_unchanged(self):
        """Test an amount that is already a preset is ignored."""
        assert compute_updated_presets([5, 10], Decimal("10"), amounts(*[10] * 20), 5, 9) is None

    def test_amount_rounded_to_whole_number(self):
        """Test amounts are rounded half up before counting."""
        updated = compute_updated_presets([5, 10], Decimal("11.50"), amounts(11.5, 12, 12.2, 11.6, 12), 5, 9)

        assert updated == [5, 10, 12]

    def test_drops_least_used_when_full(self):
        """Test overflow removes the least used preset, never the new one."""
        recent = amounts(12, 12, 12, 5, 5, 10)

        updated = compute_updated_presets([5, 10, 15], Decimal("12"), recent, 3, 3)

        assert updated == [5, 10, 12]

    def test_tie_drops_lowest_value(self):
        """Test ties on usage drop the smallest preset."""
        updated = compute_updated_presets([5, 10, 15], Decimal("12"), amounts(12, 12, 12), 3, 3)

        assert updated == [10, 12, 15]


class TestPresetAmountTuner:
    """Tests for the preset tuning side effect."""

    def _service(self, storage):
        tuner = PresetAmountTuner(storage, Settings(PRESET_THRESHOLD=3, PRESET_MAX=9))
        return LedgerService(storage, dispatcher=InlineDispatcher([tuner]))

    def _charge(self, business_id, amount):
        return PostChargeRequest(member_id=DEMO_MEMBER_ID, business_id=business_id, amount=Decimal(amount))

    def test_business_presets_updated(self):
        """Test repeated custom amounts become a preset."""
        storage = InMemoryStorage()
        business_id = uuid4()
        storage.add_business(business_id, "Bakery", preset_amounts=[5, 10], auto_update_preset_amounts=True)
        service = self._service(storage)

        for _ in range(2):
            service.post_charge(self._charge(business_id, "12.00"))
        assert storage.get_business(business_id)["preset_amounts"] == [5, 10]

        service.post_charge(self._charge(business_id, "12.00"))
        assert storage.get_business(business_id)["preset_amounts"] == [5, 10, 12]

    def test_auto_update_off(self):
        """Test businesses without auto-update are left alone."""
        storage = InMemoryStorage()
        service = self._service(storage)

        for _ in range(5):
            service.post_charge(self._charge(DEMO_BUSINESS_ID, "12.00"))

        assert storage.get_business(DEMO_BUSINESS_ID)["preset_amounts"] == []

    def test_per_business_threshold_wins(self):
        """Test a business threshold overrides the configured default."""
        storage = InMemoryStorage()
        business_id = uuid4()
        storage.add_business(
            business_id, "Deli",
            preset_amounts=[5], auto_update_preset_amounts=True, preset_amounts_threshold=1,
        )
        service = self._service(storage)

        service.post_charge(self._charge(business_id, "7.00"))

        assert storage.get_business(business_id)["preset_amounts"] == [5, 7]
