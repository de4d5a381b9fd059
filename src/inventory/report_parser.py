"""
Line-driven parser for dealer pricing reports.

A vehicle block starts with a "<year> <Make> <Model...>" line and is followed by
metadata lines in no fixed order::

    2015 Ford Edge SEL
    $8,495
    Color: Ingot Silver
    Stock #: N04252B
    VIN: 2FMTK4J85FBB65810
    Class: SUV, Intermediate
    Body: 4D Sport Utility 2/7/2026 99,377
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from inventory.config import ParserConfig
from inventory.data_models import ParsedVehicle

logger = logging.getLogger(__name__)


class ReportParseError(ValueError):
    pass


_WEEKDAY_STAMP = re.compile(r"^(Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday),")
_PAGE_NUMBER = re.compile(r"^Page \d+ of \d+$")
_VEHICLE_START = re.compile(r"^((?:19|20)\d{2})\s+([A-Z][a-zA-Z].*)$")
_METADATA_LABELS = ("Body:", "Stock", "VIN:", "Color:", "Class:", "Price:")
_INLINE_PRICE = re.compile(r"\s+\$([0-9][0-9,]*)\s*$")

_PRICE = re.compile(r"^\$([0-9][0-9,]*)")
_BODY_WITH_MILEAGE = re.compile(r"Body:\s+(.+?)\s+(?:(\d{1,2}/\d{1,2}/\d{4})\s+)?([0-9][0-9,]*)\s*$")
_BODY = re.compile(r"Body:\s+(.+)")
_STOCK = re.compile(r"Stock\s*#:\s*(\S+)")
_VIN = re.compile(r"VIN:\s*(\S+)")
_COLOR = re.compile(r"Color:\s*(.+)")
_CLASS = re.compile(r"Class:\s*(.+)")
_RECALL = re.compile(r"Recall Status:\s*(.+)")
_DISPOSITION = re.compile(r"Disp:\s*(.+)")
_BARE_NUMBER = re.compile(r"^([0-9]{1,3}(?:,[0-9]{3})+|[0-9]{3,6})$")
_DATE_MILEAGE = re.compile(r"^(\d{1,2}/\d{1,2}/\d{4})\s+([0-9][0-9,]*)$")


def digits_only(raw: str) -> str:
    return re.sub(r"[^0-9]", "", raw)


def plausible_mileage(raw: str, config: ParserConfig) -> str | None:
    value = digits_only(raw)
    if not 3 <= len(value) <= 6:
        return None
    if not config.min_mileage <= int(value) <= config.max_mileage:
        return None
    return value


def is_boilerplate(line: str, config: ParserConfig) -> bool:
    return (
        line.startswith(config.header_prefixes)
        or _WEEKDAY_STAMP.match(line) is not None
        or _PAGE_NUMBER.match(line) is not None
        or any(marker in line for marker in config.boilerplate_markers)
    )


def _set_once(vehicle: ParsedVehicle, name: str, value: str) -> None:
    if value and not getattr(vehicle, name):
        setattr(vehicle, name, value)


# Each extractor returns True when its pattern matched the line.
Extractor = Callable[[ParsedVehicle, str, ParserConfig], bool]


def _extract_price(v: ParsedVehicle, line: str, _: ParserConfig) -> bool:
    m = _PRICE.match(line)
    if m:
        _set_once(v, "price", digits_only(m.group(1)))
    return m is not None


def _extract_body(v: ParsedVehicle, line: str, config: ParserConfig) -> bool:
    m = _BODY_WITH_MILEAGE.search(line)
    if m:
        _set_once(v, "body", m.group(1).strip())
        mileage = plausible_mileage(m.group(3), config)
        if mileage:
            _set_once(v, "mileage", mileage)
        return True
    m = _BODY.search(line)
    if m:
        _set_once(v, "body", m.group(1).strip())
    return m is not None


def _labelled(pattern: re.Pattern[str], name: str) -> Extractor:
    def extract(v: ParsedVehicle, line: str, _: ParserConfig) -> bool:
        m = pattern.search(line)
        if m:
            _set_once(v, name, m.group(1).strip())
        return m is not None

    extract.__name__ = f"_extract_{name}"
    return extract


def _extract_bare_mileage(v: ParsedVehicle, line: str, config: ParserConfig) -> bool:
    m = _BARE_NUMBER.match(line)
    if not m:
        return False
    mileage = plausible_mileage(m.group(1), config)
    if mileage is None:
        return False
    _set_once(v, "mileage", mileage)
    return True


def _extract_date_mileage(v: ParsedVehicle, line: str, config: ParserConfig) -> bool:
    m = _DATE_MILEAGE.match(line)
    if not m:
        return False
    mileage = plausible_mileage(m.group(2), config)
    if mileage is None:
        return False
    _set_once(v, "mileage", mileage)
    return True


EXTRACTORS: tuple[Extractor, ...] = (
    _extract_price,
    _extract_body,
    _labelled(_STOCK, "stock_number"),
    _labelled(_VIN, "vin"),
    _labelled(_COLOR, "color"),
    _labelled(_CLASS, "vehicle_class"),
    _labelled(_RECALL, "recall_status"),
    _labelled(_DISPOSITION, "disposition"),
    _extract_bare_mileage,
    _extract_date_mileage,
)


def _start_vehicle(line: str) -> ParsedVehicle | None:
    m = _VEHICLE_START.match(line)
    if m is None or line.startswith("$") or any(label in line for label in _METADATA_LABELS):
        return None
    name = m.group(2).strip()
    price = ""
    inline = _INLINE_PRICE.search(name)
    if inline:
        price = digits_only(inline.group(1))
        name = name[: inline.start()].strip()
    parts = name.split()
    return ParsedVehicle(year=m.group(1), make=parts[0], model=" ".join(parts[1:]), price=price)


@dataclass
class ReportParser:
    config: ParserConfig = field(default_factory=ParserConfig)

    def __post_init__(self) -> None:
        self._current: ParsedVehicle | None = None
        self._vehicles: list[ParsedVehicle] = []

    @property
    def accumulating(self) -> bool:
        return self._current is not None

    def _flush(self) -> None:
        current, self._current = self._current, None
        if current is None:
            return
        if current.year and current.make:
            self._vehicles.append(current)
        else:
            logger.debug("Discarding partial vehicle block: %s", current)

    def feed(self, raw_line: str) -> None:
        line = raw_line.strip()
        if not line or is_boilerplate(line, self.config):
            return
        started = _start_vehicle(line)
        if started is not None:
            self._flush()
            self._current = started
            return
        if self._current is None:
            return
        for extract in EXTRACTORS:
            if extract(self._current, line, self.config):
                return

    def finish(self) -> list[ParsedVehicle]:
        self._flush()
        vehicles, self._vehicles = self._vehicles, []
        return vehicles


def parse_report_lines(lines: Iterable[str], config: ParserConfig | None = None) -> list[ParsedVehicle]:
    parser = ReportParser(config or ParserConfig())
    for line in lines:
        parser.feed(line)
    vehicles = parser.finish()
    logger.info("Parsed %d vehicles from report", len(vehicles))
    return vehicles


def parse_report_text(text: str, config: ParserConfig | None = None) -> list[ParsedVehicle]:
    return parse_report_lines(text.splitlines(), config)


def publishable(vehicles: Sequence[ParsedVehicle]) -> list[ParsedVehicle]:
    """Drop wholesale / trade-in rows that carry no usable asking price."""
    kept = [v for v in vehicles if v.price_value() > 0]
    if len(kept) < len(vehicles):
        logger.info("Excluded %d vehicles without a positive price", len(vehicles) - len(kept))
    return kept
