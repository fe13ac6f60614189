from .common import *  # noqa
from .inventory import *  # noqa
from .employee import *  # noqa
from .mes_exec import *  # noqa
from .security_audit import *  # noqa

# Platform event-bus table (transactional outbox)
from app.events.outbox import *  # noqa
