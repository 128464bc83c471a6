"""
Utility functions for tlsocket.
"""

from __future__ import annotations

from .cert_verification import (  # noqa: F401
    PeerVerifier,
    VerificationOutcome,
    load_trust_store,
)
from .retry import (  # noqa: F401
    CLOSED,
    Attempt,
    NonblockingRetry,
    Outcome,
    RetryState,
)
from .ssl_ import (  # noqa: F401
    TlsVersion,
    create_tls_context,
    is_ipaddress,
    resolve_tls_version,
    sni_hostname,
    supported_tls_versions,
)
from .timeout import (  # noqa: F401
    Deadline,
    current_time,
)
from .wait import (  # noqa: F401
    wait_for_read,
    wait_for_write,
)
