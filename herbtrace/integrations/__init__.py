"""herbtrace.integrations: outbound gateways to the ledger network.

All outbound HTTP calls made on behalf of a ledger store go through a
gateway in this package, never via bare `requests` calls elsewhere.
Every call is:
  - Bounded by a timeout
  - Retried with backoff
  - Circuit-broken to prevent cascade failures

Current gateways:
  ca_gateway.CAGateway          certificate authority (credential check)
  ledger_gateway.LedgerGateway  REST gateway in front of the ledger network
"""
