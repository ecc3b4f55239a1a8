"""Command-line front end for checklist templates and performance reports."""
