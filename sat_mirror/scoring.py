"""
Raw-to-scaled score conversion. Pure functions, no I/O.

Scaled: round(200 + raw / max_raw * 600), max_raw = 54 (reading) or 44 (math).
Total: reading + math rounded to the nearest 10.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from typing import Iterable, Mapping, Optional

from sat_mirror.exam_format import (
    SCALED_MAX,
    SCALED_MIN,
    TOTAL_ROUNDING,
    max_raw,
    modules_for_section,
    section_for_module,
)
from sat_mirror.models import ModuleRecord, QuestionStatus, Section


@dataclass(frozen=True)
class SectionScore:
    raw_score: int
    scaled_score: int


@dataclass(frozen=True)
class TestScore:
    __test__ = False

    reading: SectionScore
    math: SectionScore
    total: int


def round_half_up(value) -> int:
    """Round to the nearest integer, halves away from zero (0.5 -> 1)."""
    if isinstance(value, Fraction):
        value = Decimal(value.numerator) / Decimal(value.denominator)
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def count_correct_in_module(record: ModuleRecord) -> int:
    return sum(1 for q in record.questions if q.status == QuestionStatus.CORRECT)


def raw_score(modules: Iterable[ModuleRecord], section: Section) -> int:
    """Count CORRECT statuses across the modules belonging to ``section``."""
    return sum(
        count_correct_in_module(record)
        for record in modules
        if section_for_module(record.module_number) == section
    )


def scaled_score(raw: int, section: Section) -> int:
    maximum = max_raw(section)
    if raw < 0 or raw > maximum:
        raise ValueError(f"Raw score {raw} outside 0..{maximum} for {section.value}")
    span = SCALED_MAX - SCALED_MIN
    # Fraction keeps the division exact so halves round consistently
    return round_half_up(SCALED_MIN + Fraction(raw, maximum) * span)


def total_score(reading_scaled: int, math_scaled: int) -> int:
    return round_half_up(Fraction(reading_scaled + math_scaled, TOTAL_ROUNDING)) * TOTAL_ROUNDING


def section_score(modules: Mapping[int, ModuleRecord], section: Section) -> Optional[SectionScore]:
    """
    Score one section, or None while any of its modules is incomplete.

    Used for the early reading-only and the math-only results views.
    """
    records = [modules.get(n) for n in modules_for_section(section)]
    if any(record is None or not record.completed for record in records):
        return None
    raw = raw_score(records, section)
    return SectionScore(raw_score=raw, scaled_score=scaled_score(raw, section))


def calculate_test_score(modules: Iterable[ModuleRecord]) -> TestScore:
    """
    Score a full attempt from its four validated module records.

    Args:
        modules: Validated records for modules 1-4

    Returns:
        TestScore with per-section raw/scaled scores and the rounded total
    """
    records = list(modules)
    reading_raw = raw_score(records, Section.READING)
    math_raw = raw_score(records, Section.MATH)
    reading = SectionScore(reading_raw, scaled_score(reading_raw, Section.READING))
    math = SectionScore(math_raw, scaled_score(math_raw, Section.MATH))
    return TestScore(
        reading=reading,
        math=math,
        total=total_score(reading.scaled_score, math.scaled_score),
    )
