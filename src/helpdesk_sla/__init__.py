"""
Helpdesk SLA Engine
===================

SLA tracking and escalation service for helpdesk tickets.
"""

__version__ = "1.0.0"
