"""
Prompt list parsing: turns pasted text or files into queue jobs.
"""

import csv
import json

from soraqueue.core.constants import ErrorCode
from soraqueue.core.error_codes import QueueError
from soraqueue.core.models import Job

_PROMPT_COLUMNS = ('fullprompt', 'full_prompt', 'prompt')
_SCENE_COLUMNS = ('scene', 'scene_label', 'title')


def job_from_entry(entry, index: int = 0) -> Job:
    """
    Build a Job from a string or a {scene, fullPrompt} mapping.
    Raises QueueError if no prompt text is present.
    """
    if isinstance(entry, str):
        prompt, scene = entry.strip(), ""
    elif isinstance(entry, dict):
        prompt = entry.get('fullPrompt') or entry.get('full_prompt') or entry.get('prompt') or ""
        scene = entry.get('scene') or entry.get('scene_label') or ""
        prompt, scene = str(prompt).strip(), str(scene).strip()
    else:
        raise QueueError(ErrorCode.INVALID_JOB,
                         f"Job {index + 1}: unsupported entry type {type(entry).__name__}")

    if not prompt:
        raise QueueError(ErrorCode.INVALID_JOB, f"Job {index + 1}: prompt is empty")
    return Job(scene_label=scene or f"Prompt {index + 1}", full_prompt=prompt)


def jobs_from_entries(entries) -> list[Job]:
    if not isinstance(entries, list):
        raise QueueError(ErrorCode.INVALID_JOB, "Prompts must be a list")
    return [job_from_entry(e, i) for i, e in enumerate(entries)]


def parse_prompt_lines(text: str) -> list[Job]:
    """
    Parse pasted text into jobs.
    - One prompt per non-empty line
    - 'Scene label | prompt' sets the display label
    """
    entries = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        scene, sep, prompt = line.partition('|')
        if sep and prompt.strip():
            entries.append({'scene': scene.strip(), 'fullPrompt': prompt.strip()})
        else:
            entries.append(line)
    return jobs_from_entries(entries)


def parse_prompt_json(filepath: str) -> list[Job]:
    """A JSON list of prompts/objects, or an object with a 'prompts' list."""
    with open(filepath, 'r', encoding='utf-8') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise QueueError(ErrorCode.INVALID_JOB, f"Invalid JSON in {filepath}: {e}")
    if isinstance(data, dict):
        data = data.get('prompts', data.get('jobs'))
    return jobs_from_entries(data)


def parse_prompt_csv(filepath: str) -> list[Job]:
    """
    Parse a CSV file.
    - If the header has a prompt/fullPrompt column, use it (and scene if present)
    - Else use the first column of every row
    """
    with open(filepath, 'r', encoding='utf-8', errors='replace', newline='') as f:
        rows = [r for r in csv.reader(f) if any(c.strip() for c in r)]

    if not rows:
        return []

    header = [c.strip().lower() for c in rows[0]]
    prompt_idx = next((i for i, c in enumerate(header) if c in _PROMPT_COLUMNS), None)
    if prompt_idx is None:
        return jobs_from_entries([r[0] for r in rows if r and r[0].strip()])

    scene_idx = next((i for i, c in enumerate(header) if c in _SCENE_COLUMNS), None)
    entries = []
    for row in rows[1:]:
        if prompt_idx >= len(row) or not row[prompt_idx].strip():
            continue
        scene = row[scene_idx] if scene_idx is not None and scene_idx < len(row) else ""
        entries.append({'scene': scene, 'fullPrompt': row[prompt_idx]})
    return jobs_from_entries(entries)


def parse_prompt_file(filepath: str) -> list[Job]:
    """Parse a .json, .csv or .txt prompts file."""
    ext = filepath.lower().rsplit('.', 1)[-1] if '.' in filepath else ''
    if ext == 'json':
        return parse_prompt_json(filepath)
    if ext == 'csv':
        return parse_prompt_csv(filepath)
    with open(filepath, 'r', encoding='utf-8', errors='replace') as f:
        return parse_prompt_lines(f.read())
