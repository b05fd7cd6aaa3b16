"""Learning & careers portal backend.

Courses with enrollment and progress tracking, job postings with an
application pipeline, payments with refunds, and in-app/e-mail
notifications, served as a FastAPI application from `portal.main`.
"""

__version__ = "1.0.0"
