"""
Workflow & SLA Module
=====================

Bounded context for ITSM record lifecycles and SLA escalation.

Responsibilities:
- Validate status transitions for incidents and change requests
- Classify incidents against their resolution SLA
- Periodically notify on SLA breaches/warnings and escalate stale incidents
- Expose transition checks, status changes and SLA views over HTTP
"""

__version__ = "1.0.0"
