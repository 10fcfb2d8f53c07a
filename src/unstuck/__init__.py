"""
unstuck: Diagnose and remediate Kubernetes resources stuck in Terminating state.

Detectors read a namespace, CRD or resource through kubectl and explain what
is blocking its deletion. The Planner turns that diagnosis into an ordered,
risk-scored plan of escalating actions, and the Applier executes the plan
one verified step at a time.
"""

__version__ = "0.1.0"
