"""
Sheet layout and grading constants.

The interview sheet is fixed: every other module sizes its per-question
arrays from these values instead of hardcoding question fields.
"""

# --- SHEET LAYOUT ---
QUESTIONS_COUNT = 4
OPTIONS_PER_QUESTION = 12
TOTAL_SCORING_AREAS = QUESTIONS_COUNT * OPTIONS_PER_QUESTION

# Barcode slots read from each sheet (0: student id, 1: interview id)
BARCODE_AREAS_COUNT = 2
STUDENT_ID_SEMANTIC = "StudentId"
INTERVIEW_ID_SEMANTIC = "InterviewId"
BARCODE_SEMANTICS = (STUDENT_ID_SEMANTIC, INTERVIEW_ID_SEMANTIC)

# --- GRADING RULES ---
# A student read by this many interviewers or fewer is flagged
SIMPLE_ERROR_MAX_INTERVIEWERS = 2

# Summary lists show this many ids before "(+N more)"
SUMMARY_LIST_LIMIT = 20

# Student id prefix -> interview session
SESSION_LABELS = {"91": "AM", "92": "PM"}
