"""
stocklot test suite

Organized by concern:
- allocation and adjustments: FIFO order, write-offs, transfers, sales
- lifecycle: batch status, expiry sweeps, utilization counters
- surfaces: HTTP API, CLI commands, migrations
"""
