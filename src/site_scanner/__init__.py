"""
Site Scanner: a staged website security scanner.

Fetches a target page and its JavaScript, looks for leaked credentials with
pattern rules, audits security headers, and, when the site embeds Supabase
project credentials, reads the project's API schema and checks which tables
answer unauthenticated reads. Deep scans run as a persisted multi-step job.

Detection is static and textual. The only requests sent to a discovered
backend are small read probes made with the key the site already ships.
"""

__version__ = "0.1.0"
