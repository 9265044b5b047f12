"""
Live call assistant backend: streams call audio to a recognizer, keeps a
rolling summary and pushes suggestion cards to the agent's dashboard.
"""

__version__ = "0.1.0"
