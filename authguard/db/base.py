# authguard/db/base.py

# Import every model so Base.metadata knows all tables. Alembic's env.py and the
# test fixtures import Base from here to create or compare the schema.
from authguard.db.base_class import Base  # noqa: F401
from authguard.db.models.login_attempt import LoginAttempt  # noqa: F401
from authguard.db.models.otp_challenge import OtpChallenge  # noqa: F401
from authguard.db.models.security_event import SecurityEvent  # noqa: F401
from authguard.db.models.two_factor_policy import TwoFactorPolicy  # noqa: F401
from authguard.db.models.user import User  # noqa: F401
