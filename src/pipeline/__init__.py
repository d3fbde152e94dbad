"""Content pipeline for creator personas.

Discovers a channel's videos page by page, extracts and chunks their captions
through long-running external runs, and embeds the chunks into the persona's
vector namespace. Every stage runs as a queued, idempotent job.
"""
