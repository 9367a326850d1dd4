import errno
import logging
import os
import re

logger = logging.getLogger(__name__)

MAX_SIZE = 2**64 - 1

UNITS = {
    "k": 1024,
    "m": 1024**2,
    "g": 1024**3,
    "t": 1024**4,
    "p": 1024**5,
}

# ascii unit letters in both cases
_units = {**UNITS, **{unit.upper(): multiplier for unit, multiplier in UNITS.items()}}

_number = re.compile(r"[ \t\n\r\f\v]*([+-]?)([0-9]+)")


class ParseError(ValueError):
    def __init__(self, sizestring: str, reason: str) -> None:
        ValueError.__init__(self, f"{sizestring}: {reason}")
        self.sizestring = sizestring
        self.reason = reason


def parse_size_strict(sizestring: str) -> int:
    """Parses a size like `100`, `4K` or `2 G` into a number of bytes.
    The unit suffixes are binary (1024-based) and case-insensitive.
    Raises `ParseError` if the string is invalid or the size doesn't fit into 64 bits.
    """

    m = _number.match(sizestring)
    if not m:
        raise ParseError(sizestring, "size cannot be parsed: no digits")

    sign, digits = m.groups()
    value = int(digits)
    if value > MAX_SIZE:
        raise ParseError(sizestring, f"size cannot be parsed: {os.strerror(errno.ERANGE)}")
    if sign == "-" and value != 0:
        raise ParseError(sizestring, "size cannot be negative")

    rest = sizestring[m.end() :].lstrip(" ")
    if not rest:
        return value

    try:
        multiplier = _units[rest]
    except KeyError:
        raise ParseError(sizestring, f"unknown postfix: {rest}") from None

    value *= multiplier
    if value > MAX_SIZE:
        raise ParseError(sizestring, f"size too large: {os.strerror(errno.ERANGE)}")

    return value


def parse_size(sizestring: str) -> int:
    """Returns the size in bytes or 0 if `sizestring` cannot be parsed.
    Note that a valid size of 0 cannot be distinguished from an error.
    """

    try:
        size = parse_size_strict(sizestring)
    except ParseError as e:
        logger.error("%s", e)
        return 0

    if size == 0:
        logger.error("%s: size cannot be zero", sizestring)
    return size
