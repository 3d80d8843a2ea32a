"""
Link Prediction Prompt

Suggests a predicate for two entities that keep being mentioned together
but have no relationship yet.
"""

LINK_PREDICTION_SYSTEM = """You suggest relationships for a personal knowledge graph.
A predicate is a short, descriptive verb phrase in snake_case (e.g. is_deployed_on, works_for)."""

LINK_PREDICTION_PROMPT = """These two entities are frequently mentioned together.
Suggest the most likely relationship predicate between them.

Entity 1: "{source_name}" (Description: {source_description})
Entity 2: "{target_name}" (Description: {target_description})

Suggest a predicate for: {source_name} -> [PREDICATE] -> {target_name}

Respond as {{"predicate": "snake_case_predicate"}}"""
