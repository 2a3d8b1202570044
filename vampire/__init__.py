"""
Vampire — issue-to-branch automation.

Hands a coding task to an autonomous coding agent inside an isolated
clone, then pushes the result as a branch with a ready-made PR body.
"""

__version__ = "0.3.0"
__codename__ = "Vampire"
