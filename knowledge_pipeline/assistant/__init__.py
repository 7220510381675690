"""
Assistant Module
================

Grounded answers, gap tracking and conversation state.

Responsibilities:
- Detect the specifics an answer could not give and open follow-up tickets
- Hand follow-ups to the notification channel (at-least-once)
- Keep the append-only conversation log and its recent window
- Orchestrate query -> tier -> context -> completion -> gap review
"""
