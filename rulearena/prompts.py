"""Prompt templates for arena modes and rule proposals"""

from typing import Dict, List

from rulearena.core import ErrorCategory, Severity

# ============================================================================
# SYSTEM PROMPT
# ============================================================================

DEFAULT_INSTRUCTION = "You are a helpful assistant. Answer accurately and concisely."


def build_system_prompt(rules_prompt: str) -> str:
    """Learned rules (if any) followed by the default instruction."""
    if rules_prompt:
        return f"{rules_prompt}\n\n{DEFAULT_INSTRUCTION}"
    return DEFAULT_INSTRUCTION


# ============================================================================
# DIVIDE & CONQUER
# ============================================================================

SUBTASK_TEMPLATES = [
    ("Analysis", "Analyze: {content}"),
    ("Solution", "Build a solution for: {content}"),
    ("Optimization", "Optimize: {content}"),
]


def build_subtasks(content: str) -> List[tuple]:
    """(step title, prompt) pairs in dispatch order"""
    return [(title, template.format(content=content)) for title, template in SUBTASK_TEMPLATES]


# ============================================================================
# PROJECT
# ============================================================================

PLANNER_TEMPLATE = """Create a concise, step-by-step plan for the following request.
List the steps in the order they should be carried out.

Request:
{content}"""

EXECUTOR_TEMPLATE = """Carry out the plan below for the given request and produce the complete result.

Request:
{content}

Plan:
{plan}"""

REVIEWER_TEMPLATE = """Review the following work for correctness, completeness and quality.
Point out concrete problems and suggest improvements.

Request:
{content}

Work to review:
{execution}"""


# ============================================================================
# RESPONSE LAYOUT
# ============================================================================

SECTION_SEPARATOR = "\n\n---\n\n"


def model_section(model_name: str, text: str) -> str:
    return f"### {model_name}\n\n{text}"


def step_section(index: int, title: str, model_name: str, text: str) -> str:
    return f"### Step {index}: {title} ({model_name})\n\n{text}"


def error_text(model_id: str, error: Exception) -> str:
    return f"⚠️ {model_id} failed to respond: {error}"


# ============================================================================
# RULE PROPOSAL TEMPLATES
# ============================================================================

# Interpolated with {pattern_key} and {occurrences}
RULE_TEMPLATES: Dict[ErrorCategory, Dict] = {
    ErrorCategory.FACTUAL: {
        "title": "Verify facts before stating them ({pattern_key})",
        "description": (
            "Users corrected factual statements {occurrences} times "
            "(pattern: {pattern_key})."
        ),
        "instruction": (
            "Double-check names, dates, places and figures before stating them. "
            "If you are not certain a fact is correct, say so instead of guessing."
        ),
        "severity": Severity.HIGH,
    },
    ErrorCategory.FORMATTING: {
        "title": "Follow the requested output format ({pattern_key})",
        "description": (
            "Responses were reformatted by users {occurrences} times "
            "(pattern: {pattern_key})."
        ),
        "instruction": (
            "Use the output format the user asks for. Keep Markdown lists, tables "
            "and headings consistent and do not add formatting that was not requested."
        ),
        "severity": Severity.LOW,
    },
    ErrorCategory.CODE: {
        "title": "Produce runnable, correct code ({pattern_key})",
        "description": (
            "Code in responses was corrected {occurrences} times "
            "(pattern: {pattern_key})."
        ),
        "instruction": (
            "Only show code that is syntactically valid and complete. Include required "
            "imports and do not call functions or APIs that do not exist."
        ),
        "severity": Severity.HIGH,
    },
    ErrorCategory.MATH: {
        "title": "Check calculations step by step ({pattern_key})",
        "description": (
            "Calculations were corrected {occurrences} times (pattern: {pattern_key})."
        ),
        "instruction": (
            "Work through calculations step by step and verify the final result "
            "before presenting it."
        ),
        "severity": Severity.HIGH,
    },
    ErrorCategory.TONE: {
        "title": "Match the expected tone ({pattern_key})",
        "description": (
            "Users adjusted the tone of responses {occurrences} times "
            "(pattern: {pattern_key})."
        ),
        "instruction": (
            "Match the user's register. Stay polite and professional and avoid "
            "condescending or overly casual phrasing."
        ),
        "severity": Severity.LOW,
    },
    ErrorCategory.CONTEXT: {
        "title": "Respect the conversation context ({pattern_key})",
        "description": (
            "Responses ignored earlier context {occurrences} times "
            "(pattern: {pattern_key})."
        ),
        "instruction": (
            "Take earlier messages of the conversation into account and do not "
            "contradict or forget information the user already provided."
        ),
        "severity": Severity.MEDIUM,
    },
    ErrorCategory.LOGIC: {
        "title": "Keep reasoning consistent ({pattern_key})",
        "description": (
            "Reasoning errors were corrected {occurrences} times "
            "(pattern: {pattern_key})."
        ),
        "instruction": (
            "Make sure each conclusion follows from the previous steps and that the "
            "answer does not contradict itself."
        ),
        "severity": Severity.MEDIUM,
    },
    ErrorCategory.LANGUAGE: {
        "title": "Use correct language and spelling ({pattern_key})",
        "description": (
            "Language or spelling was corrected {occurrences} times "
            "(pattern: {pattern_key})."
        ),
        "instruction": (
            "Answer in the user's language and check grammar and spelling before "
            "responding."
        ),
        "severity": Severity.LOW,
    },
    ErrorCategory.INSTRUCTION: {
        "title": "Follow the user's instructions ({pattern_key})",
        "description": (
            "Responses were corrected {occurrences} times for not following "
            "instructions (pattern: {pattern_key})."
        ),
        "instruction": (
            "Read the request carefully and follow every explicit instruction. "
            "Avoid phrasing like the corrected pattern '{pattern_key}'."
        ),
        "severity": Severity.MEDIUM,
    },
}


def render_rule_template(
    category: ErrorCategory, pattern_key: str, occurrences: int
) -> Dict:
    """Fill the category template; unmapped categories use INSTRUCTION."""
    template = RULE_TEMPLATES.get(category, RULE_TEMPLATES[ErrorCategory.INSTRUCTION])
    values = {"pattern_key": pattern_key, "occurrences": occurrences}
    return {
        "title": template["title"].format(**values),
        "description": template["description"].format(**values),
        "instruction": template["instruction"].format(**values),
        "severity": template["severity"],
    }
