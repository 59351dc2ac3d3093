"""Domain Value Objects"""
from pydantic import BaseModel, validator
from datetime import date, timedelta
from typing import Iterator

from domain.exceptions import InvalidRangeError


class DateRange(BaseModel):
    """Half-open stay interval [check_in, check_out), at least one night"""
    check_in: date
    check_out: date

    @validator('check_out')
    def check_out_after_check_in(cls, v, values):
        if 'check_in' in values and v <= values['check_in']:
            raise ValueError('Check-out must be after check-in')
        return v

    @classmethod
    def of(cls, check_in: date, check_out: date) -> "DateRange":
        """Build a range, raising InvalidRangeError instead of a pydantic error"""
        if not isinstance(check_in, date) or not isinstance(check_out, date):
            raise InvalidRangeError("Check-in and check-out must be calendar dates")
        if check_out <= check_in:
            raise InvalidRangeError(check_in=check_in, check_out=check_out)
        return cls(check_in=check_in, check_out=check_out)

    def nights(self) -> int:
        """Calculate number of nights"""
        return (self.check_out - self.check_in).days

    def overlaps(self, other: "DateRange") -> bool:
        # A checkout on day D does not collide with a check-in on day D
        return self.check_in < other.check_out and other.check_in < self.check_out

    def contains(self, day: date) -> bool:
        return self.check_in <= day < self.check_out

    def each_night(self) -> Iterator[date]:
        """Yield the date of every night in the stay"""
        day = self.check_in
        while day < self.check_out:
            yield day
            day += timedelta(days=1)

    def __str__(self) -> str:
        return f"[{self.check_in.isoformat()}, {self.check_out.isoformat()})"

    class Config:
        frozen = True
