"""Forensic timestamp extraction prompt and response schema.

FORENSIC_PROMPT variables: {task}.
TIMESTAMP_SCHEMA is sent as ``response_schema`` so the model answers with a
``timestamps`` list; the findings adapter still tolerates deviations.
"""

from __future__ import annotations

SYSTEM_INSTRUCTION = (
    "You are an expert forensic analyst specialised in extracting timestamps "
    "from video evidence. Report only what is visible or audible in the video."
)

FORENSIC_PROMPT = """\
Task: {task}

Analyze the video strictly and find the exact timestamps.
For every relevant moment give the start and end time in HH:MM:SS format, \
a brief factual summary, and a confidence score between 0 and 1.
Also give a one-paragraph description of what you found overall.
Return the result strictly as JSON."""

TIMESTAMP_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "description": {
            "type": "string",
            "description": "One-paragraph overview of the findings.",
        },
        "timestamps": {
            "type": "array",
            "description": "A list of timestamps extracted from the video.",
            "items": {
                "type": "object",
                "properties": {
                    "from": {
                        "type": "string",
                        "description": "Start time of the timestamp in HH:MM:SS format.",
                    },
                    "to": {
                        "type": "string",
                        "description": "End time of the timestamp in HH:MM:SS format.",
                    },
                    "summary": {
                        "type": "string",
                        "description": "A brief summary of the content at the specified timestamp.",
                    },
                    "confidence": {
                        "type": "number",
                        "description": "Confidence score of the timestamp extraction (0 to 1).",
                    },
                },
                "required": ["from", "to", "summary", "confidence"],
            },
        },
    },
    "required": ["timestamps"],
}
