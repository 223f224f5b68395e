"""Initialize Supabase database schema for SAT Mirror."""
import os

from dotenv import load_dotenv

load_dotenv()

# SQL schema
SCHEMA_SQL = """
-- Question Bank
CREATE TABLE IF NOT EXISTS questions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    test_id INT NOT NULL,
    module_number INT NOT NULL CHECK (module_number BETWEEN 1 AND 4),
    question_number INT NOT NULL CHECK (question_number >= 1),
    content JSONB NOT NULL DEFAULT '[]',
    answers JSONB NOT NULL DEFAULT '[]',
    correct_answer TEXT NOT NULL,
    section VARCHAR(10) NOT NULL CHECK (section IN ('MATH', 'READING')),
    created_at TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE(test_id, module_number, question_number)
);

-- One attempt per user and test; modules JSONB keyed module_1..module_4
CREATE TABLE IF NOT EXISTS test_attempts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id TEXT NOT NULL,
    test_id INT NOT NULL,
    modules JSONB NOT NULL DEFAULT '{}',
    test_status VARCHAR(20) NOT NULL DEFAULT 'IN_PROGRESS' CHECK (test_status IN ('IN_PROGRESS', 'COMPLETE')),
    total_time INT DEFAULT 0,
    reading_score INT,
    math_score INT,
    total_score INT,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    last_modified TIMESTAMPTZ DEFAULT NOW(),
    completed_at TIMESTAMPTZ,
    UNIQUE(user_id, test_id)
);

CREATE OR REPLACE FUNCTION get_distinct_test_ids()
RETURNS TABLE(test_id INT) AS $$
    SELECT DISTINCT q.test_id FROM questions q ORDER BY q.test_id;
$$ LANGUAGE sql STABLE;

-- Create indexes for performance
CREATE INDEX IF NOT EXISTS idx_questions_test_module ON questions(test_id, module_number);
CREATE INDEX IF NOT EXISTS idx_test_attempts_user_id ON test_attempts(user_id);
CREATE INDEX IF NOT EXISTS idx_test_attempts_status ON test_attempts(test_id, test_status);
"""


def schema_statements(sql: str = SCHEMA_SQL) -> list[str]:
    """Split the schema into statements, keeping $$-quoted function bodies whole."""
    statements, current, in_body = [], [], False
    for line in sql.splitlines():
        if line.strip().startswith("--") and not in_body:
            continue
        current.append(line)
        if line.count("$$") % 2 == 1:
            in_body = not in_body
        if not in_body and line.rstrip().endswith(";"):
            statement = "\n".join(current).strip().rstrip(";").strip()
            if statement:
                statements.append(statement)
            current = []
    return statements


def main():
    print("Initializing Supabase schema...")
    print(f"URL: {os.getenv('SUPABASE_URL')}")

    statements = schema_statements()
    for i, stmt in enumerate(statements, 1):
        first_line = stmt.splitlines()[0]
        print(f"  {i}/{len(statements)}: {first_line[:60]}...")

    print("\nNote: Due to Supabase client limitations, run this SQL in Supabase SQL Editor:")
    print(SCHEMA_SQL)


if __name__ == "__main__":
    main()
