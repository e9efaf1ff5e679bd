"""Tutor tool declarations and system prompt assembly for the live model."""
from live_tutor.live.constants import LANGUAGE_NAMES, TUTOR_SYSTEM_PROMPT
from live_tutor.models.session_state import SessionConfig

TUTOR_TOOLS = [
    {
        "name": "draw_diagram",
        "description": (
            "Draw a diagram, chart, or illustration on the whiteboard to help "
            "explain a concept visually."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Title of the diagram"},
                "elements": {
                    "type": "array",
                    "description": "List of elements to draw",
                    "items": {
                        "type": "object",
                        "properties": {
                            "type": {
                                "type": "string",
                                "enum": ["circle", "rectangle", "line", "arrow", "text", "curve"],
                            },
                            "x": {"type": "number", "description": "X coordinate (0-100)"},
                            "y": {"type": "number", "description": "Y coordinate (0-100)"},
                            "text": {"type": "string"},
                            "color": {"type": "string"},
                        },
                        "required": ["type", "x", "y"],
                    },
                },
                "explanation": {"type": "string"},
            },
            "required": ["title", "elements"],
        },
    },
    {
        "name": "execute_code",
        "description": (
            "Execute code to demonstrate programming concepts or solve "
            "computational problems. Shows the output to the student."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "language": {"type": "string", "enum": ["javascript", "python"]},
                "code": {"type": "string", "description": "Code to execute"},
                "explanation": {"type": "string"},
            },
            "required": ["language", "code"],
        },
    },
    {
        "name": "generate_practice_problem",
        "description": "Generate a practice problem for the student on the current topic.",
        "parameters": {
            "type": "object",
            "properties": {
                "topic": {"type": "string"},
                "difficulty": {"type": "string", "enum": ["easy", "medium", "hard"]},
                "type": {
                    "type": "string",
                    "enum": ["multiple_choice", "short_answer", "calculation", "coding", "explanation"],
                },
                "includeHints": {"type": "boolean"},
            },
            "required": ["topic", "difficulty", "type"],
        },
    },
    {
        "name": "show_step_by_step",
        "description": "Display a step-by-step solution for a problem or procedure.",
        "parameters": {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "steps": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "stepNumber": {"type": "number"},
                            "action": {"type": "string"},
                            "explanation": {"type": "string"},
                            "formula": {"type": "string"},
                            "result": {"type": "string"},
                        },
                        "required": ["stepNumber", "action", "explanation"],
                    },
                },
                "finalAnswer": {"type": "string"},
            },
            "required": ["title", "steps", "finalAnswer"],
        },
    },
    {
        "name": "create_flashcard",
        "description": "Create a flashcard to help the student memorize a concept or term.",
        "parameters": {
            "type": "object",
            "properties": {
                "front": {"type": "string"},
                "back": {"type": "string"},
                "topic": {"type": "string"},
            },
            "required": ["front", "back"],
        },
    },
    {
        "name": "set_timer",
        "description": "Set a timer for timed practice or breaks.",
        "parameters": {
            "type": "object",
            "properties": {
                "duration": {"type": "number", "description": "Duration in seconds"},
                "label": {"type": "string"},
                "alertMessage": {"type": "string"},
            },
            "required": ["duration", "label"],
        },
    },
]

TOOL_NAMES = [tool["name"] for tool in TUTOR_TOOLS]


def tools_for_gemini() -> list[dict]:
    return [{"function_declarations": TUTOR_TOOLS}]


def build_system_prompt(config: SessionConfig) -> str:
    prompt = TUTOR_SYSTEM_PROMPT

    if config.language and config.language != "en":
        lang_name = LANGUAGE_NAMES.get(config.language, config.language)
        prompt += (
            f"\n\nIMPORTANT: Communicate with the student in {lang_name}. "
            f"Speak and respond in {lang_name}."
        )

    if config.education_level:
        prompt += (
            f"\n\nThe student is at {config.education_level} level. "
            "Adjust your explanations accordingly."
        )

    if config.subject:
        prompt += f"\n\nThe current subject focus is: {config.subject}."

    return prompt
