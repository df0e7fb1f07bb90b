import logging
from collections import Counter
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from .config import Settings, settings as default_settings
from .models import Business
from .side_effects import ChargePosted
from .storage import LedgerStore

log = logging.getLogger("pdca.presets")


def _whole(amount) -> int:
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_updated_presets(
    current: list[int],
    amount: Decimal,
    recent_amounts: Iterable[Decimal],
    threshold: int,
    max_presets: int,
) -> Optional[list[int]]:
    """Return the new preset list, or None when nothing should change.

    An amount becomes a preset once it shows up ``threshold`` times in the
    recent history. If that overflows ``max_presets``, the least used of the
    other presets is dropped (lowest value wins a tie).
    """
    rounded = _whole(amount)
    if rounded in current:
        return None

    counts = Counter(_whole(a) for a in recent_amounts)
    if counts[rounded] < threshold:
        return None

    presets = sorted([*current, rounded])
    if len(presets) > max_presets:
        least_used = min((p for p in presets if p != rounded), key=lambda p: counts[p])
        presets.remove(least_used)
    return presets


class PresetAmountTuner:
    def __init__(self, store: LedgerStore, settings: Settings = default_settings):
        self.store = store
        self.settings = settings

    def __call__(self, event: ChargePosted) -> None:
        row = self.store.get_business(event.business_id)
        if not row:
            return
        business = Business.model_validate(row)
        if not business.auto_update_preset_amounts:
            return

        current = list(business.preset_amounts or self.settings.PRESET_DEFAULTS)
        threshold = business.preset_amounts_threshold or self.settings.PRESET_THRESHOLD
        max_presets = business.max_preset_amounts or self.settings.PRESET_MAX

        recent = self.store.recent_business_amounts(event.business_id, self.settings.PRESET_LOOKBACK)
        updated = compute_updated_presets(current, event.amount, recent, threshold, max_presets)
        if updated is None:
            return

        self.store.update_preset_amounts(event.business_id, updated)
        log.info("Preset amounts for business %s updated to %s", event.business_id, updated)
