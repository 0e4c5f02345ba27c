"""
Routers module - API endpoint handlers organized by feature.

- command: natural language command chat (run, upload, reset, state,
  suggestions, stats)
"""
