"""
refdesk: background job pipeline for the league officiating back office.

Accepts long-running requests (mission-order PDFs, match-sheet and broadcast
e-mails, tabular exports), queues them as durable Job rows, dispatches them
to Celery workers and exposes their progress and signed artifact links.
"""
