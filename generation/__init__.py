"""
Paper Generation Pipeline
generation/

Steps:
1. GPT Client          : provider wrapper, timeout + exponential backoff retry, JSON extraction
2. Question Generator  : chunked MCQ generation, validation, sequential renumbering
3. Explanations        : per-question / whole-paper explanation prompt and parsing
"""
