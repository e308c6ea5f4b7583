"""NGO Back Office — Administrative API for a student-run NGO website.

Staff log into the back office to edit structured content, manage team
rosters, events, volunteers and contact submissions, and review the audit
trail of administrative actions.

Architecture layers (bottom to top):
    1. Store     — aiosqlite persistence for administrators, documents, audit log
    2. Security  — Session tokens, authorization gate, rate limiter, audit pipeline
    3. Services  — Authentication flows, mail delivery
    4. API/CLI   — FastAPI HTTP server, Typer management CLI
"""

__version__ = "0.1.0"
__author__ = "NGO Back Office Contributors"
__license__ = "Apache-2.0"

__all__ = ["__version__"]
