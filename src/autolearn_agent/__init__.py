"""
AutoLearn Agent - autonomous plan/execute/verify/fix mission runner.
"""

__version__ = "0.1.0"
