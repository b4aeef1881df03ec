"""
Prompt text for the AI refinement pass and strategy discovery.

Each mode has a default instruction block that users may override per
template; the builders below append the parts that must always be present
(key-field instructions, the ticket payload, the expected output format).
"""
from __future__ import annotations

import json

from app.utils.sort_config import AIMode

DEFAULT_PROMPTS: dict[AIMode, str] = {
    AIMode.RELATIONSHIP_LINKS: (
        "Analyze these tickets and identify which ones reference each other.\n"
        "\n"
        "Look for both:\n"
        "1. Structured references in fields such as \"Linked Issues\" - ticket IDs "
        "like \"SBT-711\" or \"PROJCARD-317\".\n"
        "2. Natural language references - \"blocked by X\", \"depends on X\", "
        "\"related to X\", \"same as X\", \"duplicate of X\".\n"
        "\n"
        "A ticket whose Linked Issues field lists \"PROJCARD-317, SBT-920\" has a "
        "relationship to each of those tickets with confidence 1.0.\n"
        "\n"
        "Return a JSON array of relationships: "
        "[{\"from\": \"TICKET-ID\", \"to\": \"TICKET-ID\", \"confidence\": 0.0-1.0}]"
    ),
    AIMode.SEMANTIC_CLUSTERING: (
        "Analyze these tickets and group them by semantic similarity and theme.\n"
        "Consider similar topics or features, the same component or area, related "
        "functionality and common goals.\n"
        "\n"
        "Return a JSON object mapping ticket IDs to cluster names: "
        "{\"TICKET-ID\": \"cluster-name\"}"
    ),
    AIMode.FUZZY_MATCHING: (
        "Find all variations of ticket references in these descriptions.\n"
        "Look for misspellings (\"SBT-l367\" for \"SBT-1367\"), loose spellings "
        "(\"sbt 1367\", \"ticket #1367\", \"issue 1367\") and descriptive references "
        "(\"the authentication bug\").\n"
        "\n"
        "Return a JSON object mapping variations to canonical ticket IDs: "
        "{\"variation\": \"TICKET-ID\"}"
    ),
}


def serialize_payload(payload) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)


def build_relationship_prompt(instructions: str, key_field: str, payload: list) -> str:
    return (
        f"{instructions}\n"
        "\n"
        "Instructions:\n"
        f"1. The primary ticket identifier field is called \"{key_field}\".\n"
        "2. For each ticket, find which OTHER tickets it references.\n"
        "3. Use both explicit references and natural language.\n"
        "4. Return a JSON array of relationship objects.\n"
        "\n"
        "Ticket data:\n"
        f"{serialize_payload(payload)}\n"
        "\n"
        "Required output format (JSON array only, no markdown, no explanation):\n"
        "[\n"
        "  {\"from\": \"TICKET-ID\", \"to\": \"OTHER-TICKET-ID\", \"confidence\": 0.9}\n"
        "]\n"
        "\n"
        "If no relationships are found, return an empty array: []"
    )


def build_mapping_prompt(instructions: str, key_field: str, payload: list) -> str:
    """Prompt for the two object-shaped modes (clustering, fuzzy matching)."""
    return (
        f"{instructions}\n"
        "\n"
        f"The ticket ID field is \"{key_field}\". Use this field to identify tickets "
        "in your response.\n"
        "\n"
        "Ticket data:\n"
        f"{serialize_payload(payload)}\n"
        "\n"
        "Respond with ONLY the JSON object, no explanation."
    )


def build_strategy_prompt(columns: list, sample: list, total: int) -> str:
    return (
        "You are analyzing ticket/card data to suggest grouping strategies for "
        "printing and organizing cards.\n"
        "\n"
        "Analyze this sample and suggest 3-5 different ways these tickets could be "
        "grouped together.\n"
        "\n"
        f"Available fields: {', '.join(columns)}\n"
        "\n"
        f"Sample data ({len(sample)} of {total} tickets):\n"
        f"{serialize_payload(sample)}\n"
        "\n"
        "For each strategy give a clear name, a description, the mode to use "
        "(\"relationship-links\" for references between tickets, "
        "\"semantic-clustering\" for grouping by theme or category), the fields to "
        "analyze, and a confidence score between 0.0 and 1.0.\n"
        "\n"
        "Output format (JSON only, no explanation):\n"
        "[\n"
        "  {\"id\": \"unique-id\", \"name\": \"Strategy Name\", "
        "\"description\": \"What this strategy does\", "
        "\"mode\": \"relationship-links\", \"suggestedFields\": [\"field1\"], "
        "\"confidence\": 0.9}\n"
        "]\n"
        "\n"
        "Fields holding ticket references (\"SBT-711\", \"PROJ-123\") suit "
        "relationship-links; categorical or free-text fields suit "
        "semantic-clustering.\n"
        "\n"
        "Respond with ONLY the JSON array."
    )
