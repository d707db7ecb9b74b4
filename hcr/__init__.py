"""Health Check Reconciler (HCR).

Keeps Consul TTL health checks in step with Kubernetes pod readiness:
 - watches labelled pods and classifies readiness transitions
 - queues create/update actions with bounded, rate-limited retry
 - registers and flips TTL checks on the agent local to each pod's host
 - periodically sweeps every managed pod to repair drift
"""
