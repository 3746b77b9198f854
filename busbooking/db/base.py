# Import all models so Base.metadata is complete (Alembic, test fixtures)
from busbooking.db.session import Base  # noqa: F401
from busbooking.models.user import User  # noqa: F401
from busbooking.models.bus import Bus  # noqa: F401
from busbooking.models.seat import Seat  # noqa: F401
from busbooking.models.trip import Trip  # noqa: F401
from busbooking.models.trip_log import TripStatusLog  # noqa: F401
from busbooking.models.trip_report import TripReport  # noqa: F401
from busbooking.models.reservation import Reservation  # noqa: F401
from busbooking.models.payment import Payment  # noqa: F401
from busbooking.models.gateway_transaction import GatewayTransaction  # noqa: F401
from busbooking.models.voucher import Voucher, VoucherUsage  # noqa: F401
from busbooking.models.audit_log import AuditLog  # noqa: F401
from busbooking.models.email_log import EmailLog  # noqa: F401
