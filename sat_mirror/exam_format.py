"""Fixed digital SAT exam format: modules, sections, timing and score scale.

Modules 1-2 are Reading & Writing (27 questions, 32 minutes each),
modules 3-4 are Math (22 questions, 35 minutes each).
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

from sat_mirror.models import Section


@dataclass(frozen=True)
class ModuleFormat:
    module_number: int
    section: Section
    question_count: int
    duration_seconds: int
    title: str


MODULE_FORMATS: Dict[int, ModuleFormat] = {
    1: ModuleFormat(1, Section.READING, 27, 32 * 60, "Reading & Writing"),
    2: ModuleFormat(2, Section.READING, 27, 32 * 60, "Reading & Writing"),
    3: ModuleFormat(3, Section.MATH, 22, 35 * 60, "Mathematics"),
    4: ModuleFormat(4, Section.MATH, 22, 35 * 60, "Mathematics"),
}

MODULE_NUMBERS: Tuple[int, ...] = tuple(sorted(MODULE_FORMATS))

# Score scale
SCALED_MIN = 200
SCALED_MAX = 800
TOTAL_ROUNDING = 10


def module_format(module_number: int) -> ModuleFormat:
    """Return the format of a module, raising ValueError outside 1..4."""
    try:
        return MODULE_FORMATS[module_number]
    except KeyError:
        raise ValueError(f"Unknown module number: {module_number!r}") from None


def section_for_module(module_number: int) -> Section:
    return module_format(module_number).section


def modules_for_section(section: Section) -> Tuple[int, ...]:
    return tuple(n for n in MODULE_NUMBERS if MODULE_FORMATS[n].section == section)


def max_raw(section: Section) -> int:
    """Number of questions in a section: 54 for reading, 44 for math."""
    return sum(MODULE_FORMATS[n].question_count for n in modules_for_section(section))


def check_question_numbers(module_number: int, question_numbers: Iterable[int]) -> List[str]:
    """
    Problems with a module's question numbering.

    Returns:
        Human-readable problems, empty when the numbers are exactly 1..question_count
    """
    found = sorted(question_numbers)
    expected = module_format(module_number).question_count
    problems = []
    if found != list(range(1, len(found) + 1)):
        problems.append("numbering is not contiguous from 1")
    if len(found) != expected:
        problems.append(f"{len(found)} questions, expected {expected}")
    return problems
