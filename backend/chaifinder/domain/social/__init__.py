"""Social domain exports."""

from . import audit, policy, service, sockets  # noqa: F401
from .models import RequestState  # noqa: F401
from .schemas import FriendRow, RequestRow  # noqa: F401
from .service import RelationshipLedger, get_ledger  # noqa: F401
