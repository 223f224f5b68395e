"""Ingest .jsonl question files: one question per line, bulk UPSERT into questions."""
import json
import argparse
import logging
from collections import defaultdict
from pathlib import Path

from sat_mirror.exam_format import MODULE_FORMATS, check_question_numbers, section_for_module
from sat_mirror.models import Question, Section

logger = logging.getLogger(__name__)

DEFAULT_JSONL = Path(__file__).resolve().parent / "questions.jsonl"


def parse_section(raw: str | None, module_number: int) -> Section:
    """Section from the line, or from the module number when missing/unknown."""
    value = (raw or "").strip().upper()
    if value in ("MATH", "MATHEMATICS"):
        return Section.MATH
    if value in ("READING", "READING_WRITING", "ENGLISH"):
        return Section.READING
    return section_for_module(module_number)


def parse_line(line: str) -> dict | None:
    """Parse one JSONL line into a questions row. Returns None if invalid/skip."""
    line = line.strip()
    if not line:
        return None
    try:
        raw = json.loads(line)
    except json.JSONDecodeError:
        return None
    try:
        test_id = int(raw["test_id"])
        module_number = int(raw["module_number"])
        question_number = int(raw["question_number"])
    except (KeyError, TypeError, ValueError):
        return None
    if module_number not in MODULE_FORMATS or question_number < 1:
        return None
    correct_answer = raw.get("correct_answer")
    if correct_answer is None or str(correct_answer).strip() == "":
        return None

    content = raw.get("content") or []
    if isinstance(content, str):
        content = [{"type": "text", "value": content}]
    answers = raw.get("answers") or []
    if not isinstance(answers, list):
        return None

    return {
        "test_id": test_id,
        "module_number": module_number,
        "question_number": question_number,
        "content": content,
        "answers": answers,
        "correct_answer": str(correct_answer).strip(),
        "section": parse_section(raw.get("section"), module_number).value,
    }


def load_and_transform(path: Path):
    """Read JSONL and yield transformed question rows."""
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            row = parse_line(line)
            if row:
                yield row


def load_questions(path: Path) -> list[Question]:
    return [Question.from_row(row) for row in load_and_transform(path)]


def check_numbering(rows: list[dict]) -> list[str]:
    """
    Check each module is numbered 1..N with the exam's question count.

    Returns:
        Human-readable problems, empty when every module is well-formed
    """
    numbers = defaultdict(list)
    for row in rows:
        numbers[(row["test_id"], row["module_number"])].append(row["question_number"])

    problems = []
    for (test_id, module_number), found in sorted(numbers.items()):
        problems.extend(
            f"test {test_id} module {module_number}: {problem}"
            for problem in check_question_numbers(module_number, found)
        )
    return problems


def run_import(jsonl_path: Path | None = None, chunk_size: int = 200, dry_run: bool = False, replace: bool = False, strict: bool = False):
    path = jsonl_path or DEFAULT_JSONL
    if not path.exists():
        raise FileNotFoundError(f"JSONL not found: {path}")
    rows = list(load_and_transform(path))
    problems = check_numbering(rows)
    for problem in problems:
        logger.warning(problem)
    if problems and strict:
        raise ValueError(f"{len(problems)} numbering problems in {path}")
    if dry_run:
        print(f"Dry run: would upsert {len(rows)} questions from {path}")
        if rows:
            print("Sample row:", rows[0])
        return

    from db import delete_questions_by_test, get_question_counts, get_supabase_uncached, upsert_questions_bulk

    client = get_supabase_uncached()
    test_ids = sorted({row["test_id"] for row in rows})
    if replace:
        for test_id in test_ids:
            delete_questions_by_test(client, test_id)
        print(f"Deleted existing questions for tests {test_ids}")
    upsert_questions_bulk(client, rows, chunk_size=chunk_size)
    print(f"Upserted {len(rows)} questions from {path}")
    for test_id in test_ids:
        print(f"  test {test_id}: {get_question_counts(client, test_id)}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    parser = argparse.ArgumentParser(description="Import SAT question JSONL into Supabase questions.")
    parser.add_argument(
        "jsonl",
        nargs="?",
        default=None,
        help=f"Path to .jsonl (default: {DEFAULT_JSONL})",
    )
    parser.add_argument("--chunk-size", type=int, default=200, help="Upsert chunk size (default 200)")
    parser.add_argument("--dry-run", action="store_true", help="Parse only, do not upsert")
    parser.add_argument("--replace", action="store_true", help="Delete existing questions of the imported tests, then upsert")
    parser.add_argument("--strict", action="store_true", help="Abort when a module's numbering or size is off")
    args = parser.parse_args()
    path = Path(args.jsonl) if args.jsonl else DEFAULT_JSONL
    run_import(jsonl_path=path, chunk_size=args.chunk_size, dry_run=args.dry_run, replace=args.replace, strict=args.strict)
