"""
SolutionBot Core
================
Problem-page lookup and schedule keeping for a textbook study bot.

Architecture:
    - Normalizer: Turns "5-10", "5.10", "5 – 10" into one canonical token
    - Search Engine: Finds the first PDF page mentioning a token
    - Rasterizer: Renders a page to a white-backed JPEG, one render at a time
    - Cache Builder: Indexes every problem of every source and pre-renders it
    - Schedule: JSON-backed test/quiz list with stateless pagination

Version: 1.0.0
"""

__version__ = "1.0.0"
