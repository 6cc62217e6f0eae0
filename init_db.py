"""Print the Supabase database schema for the AMEL exam console."""
import os

from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")

# SQL schema
SCHEMA_SQL = """
-- Candidates (registration form)
CREATE TABLE IF NOT EXISTS candidates (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    personnel_no VARCHAR(50) NOT NULL,
    unit VARCHAR(100) NOT NULL,
    rating_sought VARCHAR(100),
    exam_date DATE,
    dgac_amel_no VARCHAR(50),
    dgac_rating VARCHAR(100),
    ga_auth_no VARCHAR(50),
    ga_rating VARCHAR(100),
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Access codes issued per exam package
CREATE TABLE IF NOT EXISTS exam_tokens (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    subject VARCHAR(20) NOT NULL,
    exam_no INT NOT NULL,
    access_code VARCHAR(50) NOT NULL,
    duration_minutes INT NOT NULL DEFAULT 60 CHECK (duration_minutes > 0),
    UNIQUE(subject, exam_no, access_code)
);

-- Question bank (answer key)
CREATE TABLE IF NOT EXISTS questions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    subject VARCHAR(20) NOT NULL,
    exam_no INT NOT NULL,
    position INT DEFAULT 0,
    question_text TEXT NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS options (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    question_id UUID NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
    position INT DEFAULT 0,
    option_text TEXT NOT NULL,
    is_correct BOOLEAN NOT NULL DEFAULT FALSE
);

-- Exam attempts
CREATE TABLE IF NOT EXISTS exam_results (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    candidate_id UUID NOT NULL REFERENCES candidates(id),
    subject VARCHAR(20) NOT NULL,
    exam_no INT NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'IN_PROGRESS' CHECK (status IN ('IN_PROGRESS', 'COMPLETED')),
    started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    finished_at TIMESTAMPTZ,
    score INT,
    total_correct INT,
    duration_minutes INT
);

-- One answer per (result, question); upserted on every selection
CREATE TABLE IF NOT EXISTS exam_answers (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    result_id UUID NOT NULL REFERENCES exam_results(id) ON DELETE CASCADE,
    question_id UUID NOT NULL REFERENCES questions(id),
    selected_option_id UUID NOT NULL REFERENCES options(id),
    updated_at TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE(result_id, question_id)
);

-- Create indexes for performance
CREATE INDEX IF NOT EXISTS idx_questions_package ON questions(subject, exam_no);
CREATE INDEX IF NOT EXISTS idx_options_question_id ON options(question_id);
CREATE INDEX IF NOT EXISTS idx_exam_results_candidate_id ON exam_results(candidate_id);
CREATE INDEX IF NOT EXISTS idx_exam_answers_result_id ON exam_answers(result_id);
"""


if __name__ == "__main__":
    print("Supabase schema for the AMEL exam console")
    print(f"URL: {SUPABASE_URL}")
    print("\nNote: Due to Supabase client limitations, run this SQL in Supabase SQL Editor:")
    print(SCHEMA_SQL)
