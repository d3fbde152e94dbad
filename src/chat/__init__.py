"""Persona chat engine.

Answers user messages in a creator persona's voice, grounded in that persona's
embedded caption chunks, and attaches validated video references.
"""
