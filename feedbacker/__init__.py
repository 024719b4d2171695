"""feedbacker: turn repository feedback into pull requests.

Feedback submissions are routed through a configurable language model, the
resulting change proposal is validated and pushed as a branch under a single
automation identity, and a pull request is opened or updated for it. A
separate webhook state machine labels, welcomes, assigns and thanks issues.
"""

__version__ = "0.1.0"
