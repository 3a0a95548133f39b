"""
SLA Engine Module
=================

Bounded Context for Service Level Agreement tracking and escalation.

Responsibilities:
- Resolve the SLA policy governing each ticket
- Run response and resolution timers against business calendars
- Pause and resume timers as tickets wait on customers or go on hold
- Record breaches and escalate at configurable thresholds
- Notify assignees/admins and emit webhook events
- Policy administration and compliance reporting APIs
"""

__version__ = "1.0.0"
