"""Stay pricing"""
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional

from domain.entities import Room
from domain.exceptions import InvalidGuestCountError, InvalidRangeError
from domain.value_objects import DateRange

RateLookup = Callable[[Room, date], Decimal]

CENTS = Decimal("0.01")


def base_rate(room: Room, night: date) -> Decimal:
    return room.nightly_rate


class PricingCalculator:
    """
    Maps (room, range, guest count) to a total price.

    Seasonal or promotional pricing is supplied from outside as a
    ``rate_lookup(room, night)`` callable; without one every night costs
    ``room.nightly_rate``. The calculator does no I/O.
    """

    def __init__(self, rate_lookup: Optional[RateLookup] = None):
        self.rate_lookup = rate_lookup or base_rate

    def price(self, room: Room, date_range: DateRange, guest_count: int) -> Decimal:
        return self.price_for_dates(room, date_range.check_in, date_range.check_out, guest_count)

    def price_for_dates(self, room: Room, check_in: date, check_out: date, guest_count: int) -> Decimal:
        nights = (check_out - check_in).days
        if nights <= 0:
            raise InvalidRangeError(
                "A stay must be at least one night", check_in=check_in, check_out=check_out
            )
        if guest_count < 1:
            raise InvalidGuestCountError(guest_count)

        if self.rate_lookup is base_rate:
            total = Decimal(nights) * Decimal(room.nightly_rate)
        else:
            total = sum(
                (Decimal(self.rate_lookup(room, night)) for night in DateRange.of(check_in, check_out).each_night()),
                Decimal("0"),
            )
        return total.quantize(CENTS, rounding=ROUND_HALF_UP)
