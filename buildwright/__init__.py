"""
Buildwright: multi-agent application generation orchestrator.

Drives a sequence of specialized language-model agents through the
intake, research, architecture, plan validation, building, verification
and deployment phases, handing state between them through a versioned
knowledge store and reporting progress through an ordered event stream.
"""

__version__ = "1.0.0"
__author__ = "Buildwright Team"
