"""
Approval Kernel - course-tab sequential approval chains

An ordered, role-gated approval workflow for course enrollments with:
- Per-enrollment snapshots of the course tab's chain
- Head-approval override and a terminal final-approval step
- Compare-and-set step decisions that are safe under concurrency
- Per-step audit (who, when, comment)
"""

__version__ = "0.1.0"
