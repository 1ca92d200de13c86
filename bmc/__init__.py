"""
BMC Change Supervisor

Configures BMCs over Redfish and decides when a requested change has taken
effect or failed for good.
Responsibilities:
- Per (endpoint, category) mutual exclusion of change operations
- Task (job) polling with failure log retrieval
- Convergence polling for changes that return no task
- Reconnect and readiness wait after disruptive actions
- Capability validation of storage volume requests
"""
