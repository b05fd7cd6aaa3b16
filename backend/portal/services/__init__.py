"""Business logic services used by HTTP controllers.

Each service wraps a `Session`, coordinates repositories, enforces the
domain rules of one aggregate and raises `portal.errors` exceptions that
the API layer maps onto the response envelope.
"""

from .accounts import AuthService, UserService
from .analytics import AnalyticsService
from .applications import ApplicationService
from .courses import CourseService
from .enrollments import EnrollmentService
from .files import FileService
from .jobs import JobService
from .notifications import NotificationService
from .payments import PaymentService
