"""Supabase client, question upserts, and exam collaborators. Client is cached via Streamlit."""
import logging
import os
from pathlib import Path

import streamlit as st
from dotenv import load_dotenv
from supabase import create_client, Client

from sat_mirror.attempts import InMemoryAttemptStore, TestAttemptStore
from sat_mirror.database import SupabaseAttemptStore, SupabaseQuestionBank
from sat_mirror.question_bank import InMemoryQuestionBank, QuestionBank
from sat_mirror.storage import JsonFileStorage, safe_name

load_dotenv()

STORAGE_DIR = Path(os.environ.get("SAT_MIRROR_STORAGE_DIR") or ".sat_mirror")
QUESTIONS_FILE = os.environ.get("SAT_MIRROR_QUESTIONS_FILE")
DEFAULT_USER_ID = os.environ.get("SAT_MIRROR_USER_ID") or "local-student"

QUESTION_CONFLICT_KEY = "test_id,module_number,question_number"


def supabase_configured() -> bool:
    return bool(os.environ.get("SUPABASE_URL") and os.environ.get("SUPABASE_KEY"))


def _env_client() -> Client:
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_KEY")
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set")
    return create_client(url, key)


@st.cache_resource
def get_supabase() -> Client:
    return _env_client()


def get_supabase_uncached() -> Client:
    """For CLI/scripts (no Streamlit context)."""
    return _env_client()


# --- Exam collaborators ---

def _offline_question_bank() -> InMemoryQuestionBank:
    from importer import load_questions

    if not QUESTIONS_FILE:
        raise ValueError("Set SUPABASE_URL/SUPABASE_KEY, or SAT_MIRROR_QUESTIONS_FILE for offline mode")
    questions = load_questions(Path(QUESTIONS_FILE))
    logging.getLogger(__name__).info("Offline mode: %d questions from %s", len(questions), QUESTIONS_FILE)
    return InMemoryQuestionBank(questions)


@st.cache_resource
def get_collaborators() -> tuple[QuestionBank, TestAttemptStore]:
    """Question bank and attempt store shared by every page run of this server."""
    if supabase_configured():
        client = get_supabase()
        bank = SupabaseQuestionBank(client)
        return bank, SupabaseAttemptStore(client, bank)
    bank = _offline_question_bank()
    return bank, InMemoryAttemptStore(bank)


def get_device_storage(user_id: str) -> JsonFileStorage:
    """
    Per-user module storage under STORAGE_DIR.

    The user id comes from the URL, so it is reduced to one file-name segment
    and the resulting directory must sit directly under STORAGE_DIR.

    Raises:
        ValueError: the user id leaves no usable directory name
    """
    name = safe_name(user_id).strip(".")
    if not name:
        raise ValueError(f"Invalid user id: {user_id!r}")
    root = STORAGE_DIR.resolve()
    directory = (root / name).resolve()
    if directory.parent != root:
        raise ValueError(f"Invalid user id: {user_id!r}")
    return JsonFileStorage(directory)


# --- Questions ---

def upsert_questions_bulk(client: Client, rows: list[dict], chunk_size: int = 200):
    """Bulk upsert into questions. Dedupes by (test_id, module_number, question_number) so no chunk has duplicates."""
    n_before = len(rows)
    by_key = {(r["test_id"], r["module_number"], r["question_number"]): r for r in rows}
    rows = list(by_key.values())
    log = logging.getLogger(__name__)
    if len(rows) < n_before:
        log.info("Deduped questions: %d -> %d", n_before, len(rows))
    n_chunks = (len(rows) + chunk_size - 1) // chunk_size
    for i in range(0, len(rows), chunk_size):
        chunk = rows[i : i + chunk_size]
        chunk_num = i // chunk_size + 1
        log.info("Upserting chunk %d/%d (%d rows)", chunk_num, n_chunks, len(chunk))
        client.table("questions").upsert(chunk, on_conflict=QUESTION_CONFLICT_KEY).execute()


def delete_questions_by_test(client: Client, test_id: int):
    """Delete all questions of one test (used by a fresh re-import)."""
    client.table("questions").delete().eq("test_id", test_id).execute()


def get_question_counts(client: Client, test_id: int) -> dict[int, int]:
    """Returns {module_number: count} for one test."""
    r = client.table("questions").select("module_number").eq("test_id", test_id).execute()
    counts: dict[int, int] = {}
    for row in r.data or []:
        counts[row["module_number"]] = counts.get(row["module_number"], 0) + 1
    return counts
