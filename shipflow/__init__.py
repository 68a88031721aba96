"""shipflow: a guided local release workflow.

Drives feature-branch setup, committing, repository hygiene, preview
deployment and pull-request creation through the external ``git``, ``gh``
and ``firebase`` command-line tools.
"""

__version__ = "0.3.0"
