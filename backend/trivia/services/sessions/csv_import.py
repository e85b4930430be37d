"""Question import from CSV: ``question,option1,option2,option3,option4,correctAnswer``.

The correct answer column is a letter A-D. A header row is detected by
the word "question" in the first line. Every bad line is reported, and
good lines are still returned so the organizer can fix only what failed.
"""

import csv
from dataclasses import dataclass, field
from typing import List

LETTERS = ('A', 'B', 'C', 'D')
SAMPLE_CSV = (
    'question,option1,option2,option3,option4,correctAnswer\n'
    'What is the capital of France?,London,Paris,Berlin,Madrid,B\n'
    'What is 2 + 2?,3,4,5,6,B\n'
    '"Which planet is known as the ""Red Planet""?",Venus,Mars,Jupiter,Saturn,B\n'
)


@dataclass
class ImportResult:
    questions: List[dict] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self):
        return bool(self.questions) and not self.errors


def parse_questions_csv(content: str) -> ImportResult:
    result = ImportResult()
    lines = (content or '').strip().splitlines()
    if not lines:
        result.errors.append('CSV file is empty')
        return result

    start = 1 if 'question' in lines[0].lower() else 0
    for line_number, parts in enumerate(csv.reader(lines[start:]), start=start + 1):
        if not parts or not any(p.strip() for p in parts):
            continue
        if len(parts) < 6:
            result.errors.append(
                f'Line {line_number}: Expected 6 columns (question, option1, option2, option3, option4, '
                f'correctAnswer), found {len(parts)}'
            )
            continue
        text, options, letter = parts[0].strip(), [p.strip() for p in parts[1:5]], parts[5].strip().upper()
        if not text:
            result.errors.append(f'Line {line_number}: Question text is empty')
            continue
        if not all(options):
            result.errors.append(f'Line {line_number}: All options must have text')
            continue
        if letter not in LETTERS:
            result.errors.append(f'Line {line_number}: Correct answer must be A, B, C, or D (found: {parts[5]})')
            continue
        result.questions.append({'prompt': text, 'options': options, 'correct_index': LETTERS.index(letter)})

    if not result.questions and not result.errors:
        result.errors.append('No valid questions found in CSV')
    return result
