"""
herbtrace.ledger: Event Ledger Facade and its store backends.

    from herbtrace.ledger import get_ledger
    batch = get_ledger().get("QR_COL-001")
"""

from herbtrace.ledger.facade import (  # noqa: F401
    AppendReceipt,
    LedgerFacade,
    LedgerStatus,
    get_ledger,
    init_ledger,
)
