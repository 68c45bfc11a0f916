"""
Survey Flow Runtime

Computes, live from a respondent's accumulated answers, what a multi-page
survey shows and where it goes next:

    - Expression DSL evaluation (fail-open)
    - Visibility of pages, groups, questions and options
    - Per-session stable ordering (sequential, random, grouped, weighted)
    - Prioritized jump rules
    - Loop batteries: page ranges repeated once per item of a computed list
    - Loop token and answer piping substitution

ARCHITECTURAL GUARANTEE:
------------------------
The survey definition (surveyflow.model) is never mutated at runtime.
All per-respondent state lives in a versioned SessionState, persisted by a
SessionStore with compare-and-swap.

No transport, rendering or definition storage lives here.
"""

__version__ = "0.1.0"
