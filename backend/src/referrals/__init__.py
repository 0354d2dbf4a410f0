"""Referral rewards engine.

Programs reward referrers for recruiting referees:
- Referrers create shareable links under a program
- Referees claim a link and complete the program pathway
- Completion caps, reward pools and country eligibility are enforced
"""

__version__ = "0.1.0"
