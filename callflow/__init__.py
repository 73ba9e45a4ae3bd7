"""
CallFlow - An async workflow orchestration engine.

Run long-lived call-handling workflows as graphs of Task, Wait, Choice and
Pass steps, with retry/catch policies, deadlines, cancellation and an
audit history for every run.
"""

__version__ = "1.0.0"
