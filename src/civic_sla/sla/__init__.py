"""
SLA Monitoring Module
=====================

Bounded context for issue SLA deadlines and escalation.

Responsibilities:
- Assign each issue an SLA deadline from the category/priority/area policy
- Classify open issues into compliant / warning / critical / breached
- Escalate breached issues exactly once and send rate-limited notifications
- Summarize SLA compliance for reporting
"""
